import hashlib
import logging
import secrets

from phe import paillier

logger = logging.getLogger(__name__)

# ---- Chain-constant parameters & helpers (mirror contract) ----

CIPHERTEXT_TAG = "04"

VALUE_BITS = 32
UINT32_MODULUS = 2 ** VALUE_BITS
CHALLENGE_BITS = 128
SLACK_BITS = 128
RESPONSE_BOUND = 2 ** (VALUE_BITS + CHALLENGE_BITS + SLACK_BITS + 1)
RESPONSE_HEX_WIDTH = 74

MIN_KEY_BITS = 512
DEFAULT_KEY_BITS = 2048

ZERO_CIPHERTEXT = 1

def sha3_hex(s: str) -> str:
    # Same digest the contract's hashlib.sha3 produces for non-hex input
    return hashlib.sha3_256(s.encode("utf-8")).hexdigest()

def domain_hash(*parts) -> str:
    s = "|".join(str(x) for x in parts)
    return sha3_hex("XCTR:v1|" + s)

def hex_width(value: int) -> int:
    digits = len(format(value, "x"))
    return digits + digits % 2

def to_hex(value: int, width: int) -> str:
    return format(value, "0%dx" % width)

def public_key_hex(public_key: paillier.PaillierPublicKey) -> str:
    """Constructor argument for con_encrypted_counter.seed()."""
    return format(public_key.n, "x")

def generate_keypair(n_length: int = DEFAULT_KEY_BITS):
    if n_length < MIN_KEY_BITS:
        raise ValueError("Key must be at least %d bits" % MIN_KEY_BITS)
    public_key, private_key = paillier.generate_paillier_keypair(n_length=n_length)
    logger.info("Generated %d-bit counter key", n_length)
    return public_key, private_key

# ---- Codec -------------------------------------------------------------------

def encode_ciphertext(public_key, value: int) -> str:
    return CIPHERTEXT_TAG + to_hex(value, hex_width(public_key.nsquare))

def decode_ciphertext(public_key, raw: str) -> int:
    """
    Structural checks only, in the same order as the contract.
    Raises ValueError('MalformedCiphertext: ...').
    """
    width = hex_width(public_key.nsquare)
    if not isinstance(raw, str) or not raw or any(ch not in "0123456789abcdef" for ch in raw):
        raise ValueError("MalformedCiphertext: expected lower-case hex")
    if len(raw) != len(CIPHERTEXT_TAG) + width:
        raise ValueError("MalformedCiphertext: bad length")
    if not raw.startswith(CIPHERTEXT_TAG):
        raise ValueError("MalformedCiphertext: bad type tag")

    value = int(raw[len(CIPHERTEXT_TAG):], 16)
    if not 0 < value < public_key.nsquare:
        raise ValueError("MalformedCiphertext: value out of range")
    if _gcd(value, public_key.n) != 1:
        raise ValueError("MalformedCiphertext: not a unit mod n^2")
    return value

def _gcd(a: int, b: int) -> int:
    while b:
        a, b = b, a % b
    return a

def ciphertext_handle(raw: str) -> str:
    """ACL key the contract uses for an encoded ciphertext."""
    return domain_hash("handle", raw)

# ---- Encryption & proofs -----------------------------------------------------

def encrypt_value(public_key, value: int, r_value: int = None):
    """
    Returns (ciphertext_int, r). Keep r: the proof needs it.
    """
    if not isinstance(value, int) or not 0 <= value < UINT32_MODULUS:
        raise ValueError("Value must be a uint32")
    r = r_value or public_key.get_random_lt_n()
    return public_key.raw_encrypt(value, r_value=r), r

def proof_challenge(public_key, contract_name: str, principal: str, raw: str, commitment_hex: str) -> int:
    digest = domain_hash("proof", contract_name, principal, public_key_hex(public_key), raw, commitment_hex)
    return int(digest[:CHALLENGE_BITS // 4], 16)

def prove_plaintext(public_key, raw: str, value: int, r: int, contract_name: str, principal: str) -> str:
    """
    Fiat-Shamir proof that `raw` encrypts `value` under randomness `r`,
    bound to (contract_name, principal). Encoded as hex A || z || w.
    """
    n = public_key.n
    s = secrets.randbits(VALUE_BITS + CHALLENGE_BITS + SLACK_BITS)
    u = public_key.get_random_lt_n()

    commitment_hex = to_hex(public_key.raw_encrypt(s, r_value=u), hex_width(public_key.nsquare))
    e = proof_challenge(public_key, contract_name, principal, raw, commitment_hex)

    z = s + e * value
    w = (u * pow(r, e, n)) % n
    return commitment_hex + to_hex(z, RESPONSE_HEX_WIDTH) + to_hex(w, hex_width(n))

def verify_proof(public_key, raw: str, proof: str, contract_name: str, principal: str) -> bool:
    """Pre-flight mirror of the contract check. Never raises."""
    n = public_key.n
    nsquare = public_key.nsquare
    width = hex_width(nsquare)

    try:
        value = decode_ciphertext(public_key, raw)
        if len(proof) != width + RESPONSE_HEX_WIDTH + hex_width(n):
            return False
        commitment_hex = proof[:width]
        commitment = int(commitment_hex, 16)
        z = int(proof[width:width + RESPONSE_HEX_WIDTH], 16)
        w = int(proof[width + RESPONSE_HEX_WIDTH:], 16)
    except (TypeError, ValueError):
        return False

    if not 0 < commitment < nsquare or z >= RESPONSE_BOUND or not 0 < w < n:
        return False

    e = proof_challenge(public_key, contract_name, principal, raw, commitment_hex)
    lhs = (((1 + z * n) % nsquare) * pow(w, n, nsquare)) % nsquare
    rhs = (commitment * pow(value, e, nsquare)) % nsquare
    return lhs == rhs

# ---- High-level builders -----------------------------------------------------

def build_submission(public_key, value: int, caller: str, contract_name: str, r_value: int = None):
    """
    Returns kwargs for contract.increment() / contract.decrement():
        (ciphertext, proof)
    The proof only verifies when `caller` signs the call to `contract_name`.
    """
    ciphertext, r = encrypt_value(public_key, value, r_value=r_value)
    raw = encode_ciphertext(public_key, ciphertext)
    return {
        'ciphertext': raw,
        'proof': prove_plaintext(public_key, raw, value, r, contract_name, caller)
    }

# ---- Homomorphic mirror ------------------------------------------------------

def add_ciphertexts(public_key, a: int, b: int) -> int:
    return (a * b) % public_key.nsquare

def sub_ciphertexts(public_key, a: int, b: int) -> int:
    return (a * pow(b, -1, public_key.nsquare)) % public_key.nsquare

class CounterTracker:
    """
    Local helper that replays submissions to predict the contract's next
    ciphertext without decrypting anything.
    """
    def __init__(self, public_key, ciphertext: int = ZERO_CIPHERTEXT):
        self.public_key = public_key
        self.ciphertext = ciphertext or ZERO_CIPHERTEXT

    @property
    def encoded(self) -> str:
        return encode_ciphertext(self.public_key, self.ciphertext)

    @property
    def handle(self) -> str:
        return ciphertext_handle(self.encoded)

    def apply_increment(self, raw: str) -> str:
        operand = decode_ciphertext(self.public_key, raw)
        self.ciphertext = add_ciphertexts(self.public_key, self.ciphertext, operand)
        return self.encoded

    def apply_decrement(self, raw: str) -> str:
        operand = decode_ciphertext(self.public_key, raw)
        self.ciphertext = sub_ciphertexts(self.public_key, self.ciphertext, operand)
        return self.encoded

# ---- Decryption --------------------------------------------------------------

def decrypt_value(private_key, raw: str) -> int:
    """
    Decrypts an encoded counter ciphertext to its uint32 value.
    Paillier works mod n; values are centered first so that 0 - 1 lands on 2^32 - 1.
    """
    n = private_key.public_key.n
    plaintext = private_key.raw_decrypt(decode_ciphertext(private_key.public_key, raw))
    if plaintext > n // 2:
        plaintext -= n
    return plaintext % UINT32_MODULUS

class DecryptionGateway:
    """
    Key holder that decrypts for principals the contract ACL allows.

    `is_granted` is a callable (handle, principal) -> bool, normally
    `lambda h, p: contract.is_granted(handle=h, principal=p)`.
    """
    def __init__(self, private_key, is_granted):
        self.private_key = private_key
        self.is_granted = is_granted

    def decrypt(self, raw: str, principal: str) -> int:
        handle = ciphertext_handle(raw)
        if not self.is_granted(handle, principal):
            logger.warning("Decryption refused for %s on handle %s", principal, handle[:16])
            raise PermissionError("%s has no access to ciphertext %s" % (principal, handle))
        logger.debug("Decrypting handle %s for %s", handle[:16], principal)
        return decrypt_value(self.private_key, raw)
