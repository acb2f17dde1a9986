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
Byte streams the protocol codecs read from and write to.

A stream provides blocking `read()`/`readinto()`, a buffered `write()`
and a `flush()` which puts everything written so far on the wire.
Socket errors are turned into :py:exc:`~memcodec.exceptions.TransportError`
subclasses here, so the codecs never see a raw `OSError`.
'''

import socket
import ssl
import struct

from .exceptions import ServerDisconnect, TransportError, TransportTimeout

#  request id, sequence number, total datagrams, reserved
UDP_HEADER_FMT = '>HHHH'
UDP_HEADER_SIZE = struct.calcsize(UDP_HEADER_FMT)
UDP_MAX_DATAGRAM = 65535


def _transport_error(exc, where):
    '''INTERNAL: Convert a socket exception into our own.'''
    if isinstance(exc, socket.timeout):
        return TransportTimeout('Timeout during {0}'.format(where))
    if isinstance(exc, (ConnectionResetError, BrokenPipeError)):
        return ServerDisconnect(
                '{0} during {1}'.format(type(exc).__name__, where))
    return TransportError('{0} during {1}'.format(exc, where))


class SocketStream:
    '''Stream over a connected stream socket (TCP, UNIX or TLS).

    Writes are collected in a buffer and sent by :py:func:`flush`, so a
    request made of several `write()` calls goes out in one `sendall()`.
    '''

    def __init__(self, sock):
        self.sock = sock
        self.write_buffer = bytearray()

    def read(self, length):
        try:
            return self.sock.recv(length)
        except OSError as e:
            raise _transport_error(e, 'recv()')

    def readinto(self, buf):
        try:
            return self.sock.recv_into(buf)
        except OSError as e:
            raise _transport_error(e, 'recv_into()')

    def write(self, data):
        self.write_buffer.extend(data)
        return len(data)

    def flush(self):
        if not self.write_buffer:
            return
        data = bytes(self.write_buffer)
        del self.write_buffer[:]
        try:
            self.sock.sendall(data)
        except OSError as e:
            raise _transport_error(e, 'sendall()')

    def set_read_timeout(self, timeout):
        '''Set the timeout, in seconds, for blocking socket operations.

        Python sockets have one timeout for both directions, so this and
        :py:func:`set_write_timeout` set the same value.
        '''
        self.sock.settimeout(timeout)

    def set_write_timeout(self, timeout):
        self.sock.settimeout(timeout)

    def close(self):
        del self.write_buffer[:]
        self.sock.close()

    def fileno(self):
        return self.sock.fileno()


class UdpStream(SocketStream):
    '''Stream over a connected datagram socket.

    memcached prefixes every UDP datagram with an 8 byte frame header:
    request id, sequence number, number of datagrams in the message and
    a reserved field.  Every :py:func:`flush` sends the written data as
    one request with a fresh request id; reads reassemble the datagrams
    of the reply to that request in sequence order.
    '''

    def __init__(self, sock, request_id=0):
        super(UdpStream, self).__init__(sock)
        self.request_id = request_id
        self.read_buffer = b''

    def flush(self):
        if not self.write_buffer:
            return
        self.request_id = (self.request_id + 1) & 0xffff
        header = struct.pack(UDP_HEADER_FMT, self.request_id, 0, 1, 0)
        data = header + bytes(self.write_buffer)
        del self.write_buffer[:]
        try:
            self.sock.send(data)
        except OSError as e:
            raise _transport_error(e, 'send()')

    def _receive_message(self):
        '''INTERNAL: Read all datagrams belonging to the current request.'''
        fragments = {}
        total = None
        while total is None or len(fragments) < total:
            try:
                datagram = self.sock.recv(UDP_MAX_DATAGRAM)
            except OSError as e:
                raise _transport_error(e, 'recv()')
            if len(datagram) < UDP_HEADER_SIZE:
                continue
            request_id, sequence, count, _ = struct.unpack(
                    UDP_HEADER_FMT, datagram[:UDP_HEADER_SIZE])
            if request_id != self.request_id:
                #  late reply to an earlier request
                continue
            total = count
            fragments[sequence] = datagram[UDP_HEADER_SIZE:]
        return b''.join(fragments[x] for x in sorted(fragments))

    def read(self, length):
        if not self.read_buffer:
            self.read_buffer = self._receive_message()
        data = self.read_buffer[:length]
        self.read_buffer = self.read_buffer[length:]
        return data

    def readinto(self, buf):
        data = self.read(len(buf))
        buf[:len(data)] = data
        return len(data)


def tcp_stream(host, port, timeout=None, nodelay=True):
    '''Connect a TCP socket and wrap it in a :py:class:`SocketStream`.'''
    try:
        sock = socket.create_connection((host, port), timeout)
        sock.setsockopt(
                socket.IPPROTO_TCP, socket.TCP_NODELAY, 1 if nodelay else 0)
    except OSError as e:
        raise _transport_error(e, 'connect()')
    return SocketStream(sock)


def udp_stream(host, port, timeout=None):
    '''Connect a UDP socket and wrap it in a :py:class:`UdpStream`.'''
    try:
        family, socktype, proto, _, address = socket.getaddrinfo(
                host, port, 0, socket.SOCK_DGRAM)[0]
        sock = socket.socket(family, socktype, proto)
        sock.settimeout(timeout)
        sock.connect(address)
    except OSError as e:
        raise _transport_error(e, 'connect()')
    return UdpStream(sock)


def unix_stream(path, timeout=None):
    '''Connect a UNIX domain socket and wrap it in a
    :py:class:`SocketStream`.'''
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        sock.connect(path)
    except OSError as e:
        raise _transport_error(e, 'connect()')
    return SocketStream(sock)


def tls_stream(
        host, port, timeout=None, nodelay=True, verify=True, ca_path=None,
        cert_path=None, key_path=None):
    '''Connect a TCP socket, negotiate TLS and wrap it in a
    :py:class:`SocketStream`.

    :param verify: If False, the server certificate is not checked.
    :type verify: bool
    :param ca_path: File of CA certificates to verify the server with.
    :param cert_path: Client certificate chain file.
    :param key_path: Private key for `cert_path`.
    :raises: :py:exc:`~memcodec.exceptions.TransportError` if the
        certificate files can not be loaded or the handshake fails.
    '''
    try:
        context = ssl.create_default_context(cafile=ca_path)
        if not verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if cert_path:
            context.load_cert_chain(cert_path, key_path)
    except (ssl.SSLError, OSError) as e:
        raise _transport_error(e, 'TLS setup')

    plain = tcp_stream(host, port, timeout, nodelay)
    try:
        sock = context.wrap_socket(plain.sock, server_hostname=host)
    except (ssl.SSLError, OSError) as e:
        plain.close()
        raise _transport_error(e, 'TLS handshake')
    return SocketStream(sock)
