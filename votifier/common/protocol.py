import socket
import time

from cryptography.hazmat.primitives.asymmetric import padding

from votifier.common.crypto import block_size
from votifier.common.errors import DecryptionFailure, EncryptionFailure, IOFailure, MalformedVoteFormat, TimeoutFailure
from votifier.common.messages import Vote

ENC = "utf-8"   # encoding of the vote text
DELIM = b"\n"    # line delimiter for the greeting and the vote fields

PROTOCOL_NAME = "VOTIFIER"
PROTOCOL_VERSION = "1.9"
GREETING = f"{PROTOCOL_NAME} {PROTOCOL_VERSION}\n".encode(ENC)
VOTE_OPCODE = "VOTE"
MAX_LINE = 1024   # longest greeting a client will buffer before giving up
PKCS1_OVERHEAD = 11


def encode_vote(vote: Vote) -> bytes:
    '''
    The function builds the plaintext of a vote. Every field keeps its line even when it is
    missing (empty string), and there is no trailing newline.
    Input: Vote
    Output: bytes "VOTE\\n<service>\\n<user>\\n<address>\\n<timestamp>"
    '''
    fields = [vote.service_name, vote.user_name, vote.address, vote.time_stamp]
    return "\n".join([VOTE_OPCODE] + [f if f is not None else "" for f in fields]).encode(ENC)


def encode_query(message: str) -> bytes:
    ''' The function encodes an arbitrary query message as-is '''
    return message.encode(ENC)


def encrypt_block(plaintext: bytes, public_key) -> bytes:
    '''
    This function encrypts one block with RSA PKCS#1 v1.5.
    Output: ciphertext, exactly block_size(public_key) bytes long
    '''
    limit = block_size(public_key) - PKCS1_OVERHEAD
    if len(plaintext) > limit:
        raise EncryptionFailure(f"message is {len(plaintext)} bytes, at most {limit} fit in one block")
    return public_key.encrypt(plaintext, padding.PKCS1v15())


def decrypt_block(ciphertext: bytes, private_key) -> bytes:
    '''
    This function decrypts one RSA PKCS#1 v1.5 block.
    Input:
        - ciphertext: must be exactly block_size(private_key) bytes
        - private_key: RSA private key object
    Output: plaintext bytes
    '''
    expected = block_size(private_key)
    if len(ciphertext) != expected:
        raise DecryptionFailure(f"invalid block size: expected {expected}, got {len(ciphertext)}")
    try:
        return private_key.decrypt(ciphertext, padding.PKCS1v15())
    except ValueError as e:
        raise DecryptionFailure(f"failed to decrypt vote block: {e}") from e


def parse_vote(plaintext: bytes) -> Vote:
    '''
    This function parses decrypted bytes into a Vote.
    Lines after the fifth are ignored; empty fields are kept as empty strings.
    '''
    try:
        text = plaintext.decode(ENC)
    except UnicodeDecodeError as e:
        raise MalformedVoteFormat(f"vote is not valid {ENC}: {e}") from e
    lines = text.split("\n")
    if lines[0] != VOTE_OPCODE:
        raise MalformedVoteFormat(f"expected '{VOTE_OPCODE}' opcode, got {lines[0][:32]!r}")
    if len(lines) < 5:
        raise MalformedVoteFormat(f"expected 4 fields after opcode, got {len(lines) - 1}")
    return Vote(service_name=lines[1], user_name=lines[2], address=lines[3], time_stamp=lines[4])


def remaining(deadline: float) -> float:
    ''' Seconds left until a time.monotonic() deadline; raises TimeoutFailure once it has passed '''
    left = deadline - time.monotonic()
    if left <= 0:
        raise TimeoutFailure("connection deadline exceeded")
    return left


def recv_exact(sock: socket.socket, n: int, deadline: float) -> bytes:
    '''
    The function reads exactly n bytes from a socket before the deadline.
    EOF or a timeout before n bytes arrived raises TimeoutFailure.
    '''
    buf = bytearray()
    while len(buf) < n:
        sock.settimeout(remaining(deadline))
        try:
            chunk = sock.recv(n - len(buf))
        except socket.timeout as e:
            raise TimeoutFailure(f"read {len(buf)} of {n} bytes before timeout") from e
        if not chunk:
            raise TimeoutFailure(f"peer closed after {len(buf)} of {n} bytes")
        buf.extend(chunk)
    return bytes(buf)


def recv_line(sock: socket.socket, deadline: float, limit: int = MAX_LINE) -> bytes:
    '''
    The function reads up to and including the first newline, in chunks, and returns the line
    without its delimiter. Bytes after the newline in the last chunk are dropped; the greeting
    is the only thing the server sends.
    '''
    buf = bytearray()
    while True:
        nl = buf.find(DELIM)
        if nl != -1:
            return bytes(buf[:nl])
        if len(buf) > limit:
            raise IOFailure(f"no newline within {limit} bytes")
        sock.settimeout(remaining(deadline))
        try:
            chunk = sock.recv(256)
        except socket.timeout as e:
            raise TimeoutFailure("timed out waiting for greeting") from e
        if not chunk:
            raise TimeoutFailure("socket closed before greeting ended")
        buf.extend(chunk)


def send_all(sock: socket.socket, data: bytes, deadline: float) -> None:
    sock.settimeout(remaining(deadline))
    try:
        sock.sendall(data)
    except socket.timeout as e:
        raise TimeoutFailure("timed out while writing") from e
