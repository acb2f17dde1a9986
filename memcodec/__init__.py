#!/usr/bin/env python3

# Copyright 2013 Sean Reifschneider, tummy.com, ltd.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

'''
.. module:: memcodec
    :platform: Unix, Windows
    :synopsis: memcached client speaking the binary and text protocols.

    .. moduleauthor:: Sean Reifschneider <jafo@tummy.com>

A pure Python memcached client.  Each connection speaks either the
binary protocol (the default) or the text protocol, over TCP, UDP, UNIX
domain sockets or TLS, chosen by the server URI.  Keys are sharded over
several servers by hash, with a connection pool per server.

See the Client() class and the tests for examples of use.

Bugs/patches/code: https://github.com/linsomniac/python-memcodec
'''

__author__ = 'Sean Reifschneider <jafo@tummy.com>'
__version__ = '0.1'
__copyright__ = 'Copyright (C) 2013 Sean Reifschneider, tummy.com, ltd.'
__license__ = 'Apache'

from .exceptions import *                                      # noqa
from .values import Item, Raw, from_memcache_value, to_memcache_value
from .ascii import AsciiProtocol, Options, StoreCommand
from .binary import BinaryProtocol
from .connection import Connection, ServerURI, parse_uri
from .hashing import HasherBase, HasherCMemcache, HasherZero
from .pool import ConnectionPool
from .client import Client, connect
