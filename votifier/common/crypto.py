import base64, os, tempfile
from dataclasses import dataclass

from Crypto.Util import number
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from votifier.common.errors import (
    InvalidKeySize, IOFailure, PublicKeyFileNotFound, PrivateKeyFileNotFound,
    InvalidPublicKeyFile, InvalidPrivateKeyFile,
)

MIN_KEY_SIZE = 512
MAX_KEY_SIZE = 16384
PUBLIC_EXPONENT = 65537
# smallest size the cryptography backend will generate by itself
_BACKEND_MIN_KEY_SIZE = 1024


@dataclass(frozen=True)
class KeyPair:
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey

    @property
    def bits(self) -> int:
        return self.private_key.key_size


def block_size(key) -> int:
    ''' This function returns the RSA block size (modulus length) of a key in bytes '''
    return (key.key_size + 7) // 8


def rsa_generate(bits: int = 2048) -> KeyPair:
    '''
    The function generates a fresh RSA key pair.
        Input: key size in bits, 512..16384 inclusive
        Output: KeyPair
    '''
    if bits < MIN_KEY_SIZE or bits > MAX_KEY_SIZE:
        raise InvalidKeySize(f"key size must be between {MIN_KEY_SIZE} and {MAX_KEY_SIZE} bits, got {bits}")
    if bits >= _BACKEND_MIN_KEY_SIZE:
        priv = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits)
    else:
        priv = _generate_small(bits)
    return KeyPair(public_key=priv.public_key(), private_key=priv)


def _generate_small(bits: int) -> rsa.RSAPrivateKey:
    # Below 1024 bits the key is assembled from two primes of half the size
    e = PUBLIC_EXPONENT
    while True:
        p = number.getPrime(bits - bits // 2)
        q = number.getPrime(bits // 2)
        n = p * q
        if p == q or n.bit_length() != bits:
            continue
        if number.GCD(e, (p - 1) * (q - 1)) != 1:
            continue
        d = number.inverse(e, (p - 1) * (q - 1))
        numbers = rsa.RSAPrivateNumbers(
            p=p, q=q, d=d,
            dmp1=rsa.rsa_crt_dmp1(d, p),
            dmq1=rsa.rsa_crt_dmq1(d, q),
            iqmp=rsa.rsa_crt_iqmp(p, q),
            public_numbers=rsa.RSAPublicNumbers(e, n),
        )
        return numbers.private_key()


def public_pem(pub) -> bytes:
    ''' The function encodes a public key in PEM format (SubjectPublicKeyInfo) '''
    return pub.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo
    )


def private_pem(priv) -> bytes:
    ''' The function encodes a private key in unencrypted PKCS#8 PEM format '''
    return priv.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()
    )


def save_keypair(pair: KeyPair, pub_path, priv_path) -> None:
    '''
    This function writes both keys of a pair to their own PEM files.
    Both files are staged next to their destination first and only then moved into place,
    so a failed write leaves the previous key files untouched.
    Input:
        - pair: the KeyPair to persist
        - pub_path, priv_path: destination file paths
    '''
    staged = []
    try:
        for path, data in ((pub_path, public_pem(pair.public_key)), (priv_path, private_pem(pair.private_key))):
            directory = os.path.dirname(os.path.abspath(path))
            fd, tmp = tempfile.mkstemp(prefix=".votifier-", suffix=".pem", dir=directory)
            staged.append((tmp, path))
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        for tmp, path in staged:
            os.replace(tmp, path)
    except OSError as e:
        for tmp, _ in staged:
            if os.path.exists(tmp):
                os.remove(tmp)
        raise IOFailure(f"could not write key files: {e}") from e


def load_keypair(pub_path, priv_path) -> KeyPair:
    '''
    This function loads a key pair from two PEM files.
    Input: paths of the public and private key files
    Output: KeyPair
    '''
    if not os.path.isfile(pub_path):
        raise PublicKeyFileNotFound(str(pub_path))
    if not os.path.isfile(priv_path):
        raise PrivateKeyFileNotFound(str(priv_path))
    try:
        with open(pub_path, "rb") as f:
            pub = serialization.load_pem_public_key(f.read())
    except (ValueError, UnsupportedAlgorithm) as e:
        raise InvalidPublicKeyFile(str(pub_path)) from e
    except OSError as e:
        raise IOFailure(f"could not read {pub_path}: {e}") from e
    if not isinstance(pub, rsa.RSAPublicKey):
        raise InvalidPublicKeyFile(f"{pub_path} does not hold an RSA key")
    try:
        with open(priv_path, "rb") as f:
            priv = serialization.load_pem_private_key(f.read(), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        # TypeError: the file holds an encrypted key
        raise InvalidPrivateKeyFile(str(priv_path)) from e
    except OSError as e:
        raise IOFailure(f"could not read {priv_path}: {e}") from e
    if not isinstance(priv, rsa.RSAPrivateKey):
        raise InvalidPrivateKeyFile(f"{priv_path} does not hold an RSA key")
    return KeyPair(public_key=pub, private_key=priv)


def key_to_string(key) -> str:
    '''
    This function renders a key as one line of Base64 (DER, no PEM header/footer),
    the form voting sites ask for when the server is registered with them.
    '''
    if isinstance(key, rsa.RSAPrivateKey):
        der = key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption()
        )
    else:
        der = key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo
        )
    return b64(der)


def b64(b: bytes) -> str:
    ''' This function encodes bytes to a Base64 string '''
    return base64.b64encode(b).decode()
