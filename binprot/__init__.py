"""Client engine for the memcached binary protocol."""

__version__ = '0.1.0'
