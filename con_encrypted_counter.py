"""
ENCRYPTED COUNTER

A single uint32 counter stored as an additively homomorphic (Paillier, g = n + 1)
ciphertext. The contract never decrypts anything:
  - deltas arrive encrypted, with a proof of plaintext knowledge bound to
    (contract, caller)
  - increment:  C_new = C_old * C_delta        mod n^2
  - decrement:  C_new = C_old * C_delta^-1     mod n^2
  - every new counter ciphertext is granted to the contract and the caller;
    only grantees get it decrypted off-chain
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

CIPHERTEXT_TAG = "04"  # encrypted uint32
HEX_DIGITS = "0123456789abcdef"

VALUE_BITS = 32
CHALLENGE_BITS = 128
SLACK_BITS = 128
RESPONSE_BOUND = 2 ** (VALUE_BITS + CHALLENGE_BITS + SLACK_BITS + 1)
RESPONSE_HEX_WIDTH = 74

MIN_KEY_BITS = 512

ZERO_CIPHERTEXT = 1  # Enc(0) with r = 1

LOCKED_METADATA = ['operator', 'public_key', 'modulus_width', 'ciphertext_width']

def domain_hash(*parts):
    s = "|".join(str(x) for x in parts)
    return hashlib.sha3("XCTR:v1|" + s)

def mod_exp(base: int, exponent: int, modulus: int):
    if exponent == 0:
        return 1
    result = 1
    base = base % modulus
    while exponent > 0:
        if exponent % 2 == 1:
            result = (result * base) % modulus
        exponent = exponent >> 1
        base = (base * base) % modulus
    return result

def mod_inverse(x: int, modulus: int):
    # Extended Euclid; n^2 is not prime so Fermat does not apply
    old_r = x % modulus
    r = modulus
    old_s = 1
    s = 0
    while r != 0:
        q = old_r // r
        tmp = old_r - q * r
        old_r = r
        r = tmp
        tmp = old_s - q * s
        old_s = s
        s = tmp
    assert old_r == 1, 'ArithmeticFailure: operand is not invertible'
    return old_s % modulus

def gcd(a: int, b: int):
    while b != 0:
        t = a % b
        a = b
        b = t
    return a

def is_hex(s: str):
    if not isinstance(s, str) or len(s) == 0:
        return False
    for ch in s:
        if ch not in HEX_DIGITS:
            return False
    return True

def hex_width(value: int):
    digits = len(hex(value)) - 2
    return digits + digits % 2

def to_hex(value: int, width: int):
    digits = hex(value)[2:]
    return "0" * (width - len(digits)) + digits

def key_modulus():
    return int(metadata['public_key'], 16)

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# encoded ciphertext of the current counter value
counter_state = Variable()

# (handle, principal) -> True, append-only
access_grants = Hash(default_value=False)

# contract metadata / config
metadata = Hash()

# Events
CounterUpdatedEvent = LogEvent('CounterUpdated', {
    'principal': {'type': str, 'idx': True},
    'handle': {'type': str, 'idx': True},
    'operation': {'type': str}
})

AccessGrantedEvent = LogEvent('AccessGranted', {
    'handle': {'type': str, 'idx': True},
    'principal': {'type': str, 'idx': True}
})

# -----------------------------------------------------------------------------
# Ciphertext codec
# -----------------------------------------------------------------------------

def decode_ciphertext(raw: str):
    n = key_modulus()
    width = metadata['ciphertext_width']

    assert is_hex(raw), 'MalformedCiphertext: expected lower-case hex'
    assert len(raw) == len(CIPHERTEXT_TAG) + width, 'MalformedCiphertext: bad length'
    assert raw[:len(CIPHERTEXT_TAG)] == CIPHERTEXT_TAG, 'MalformedCiphertext: bad type tag'

    value = int(raw[len(CIPHERTEXT_TAG):], 16)
    assert 0 < value < n * n, 'MalformedCiphertext: value out of range'
    assert gcd(value, n) == 1, 'MalformedCiphertext: not a unit mod n^2'
    return value

def encode_ciphertext(value: int):
    return CIPHERTEXT_TAG + to_hex(value, metadata['ciphertext_width'])

def ciphertext_handle(raw: str):
    return domain_hash("handle", raw)

# -----------------------------------------------------------------------------
# Proof verification
# -----------------------------------------------------------------------------

def proof_challenge(contract: str, principal: str, raw: str, commitment_hex: str):
    digest = domain_hash("proof", contract, principal, metadata['public_key'], raw, commitment_hex)
    return int(digest[:CHALLENGE_BITS // 4], 16)

def verify_proof(value: int, raw: str, proof: str, contract: str, principal: str):
    # Never raises: any mismatch is a plain False
    n = key_modulus()
    nsquare = n * n
    width = metadata['ciphertext_width']
    modulus_width = metadata['modulus_width']

    if not is_hex(proof):
        return False
    if len(proof) != width + RESPONSE_HEX_WIDTH + modulus_width:
        return False

    commitment_hex = proof[:width]
    commitment = int(commitment_hex, 16)
    response = int(proof[width:width + RESPONSE_HEX_WIDTH], 16)
    blinding = int(proof[width + RESPONSE_HEX_WIDTH:], 16)

    if commitment <= 0 or commitment >= nsquare:
        return False
    if response >= RESPONSE_BOUND:
        return False
    if blinding <= 0 or blinding >= n:
        return False

    challenge = proof_challenge(contract, principal, raw, commitment_hex)

    # (1+n)^z * w^n == A * C^e   (mod n^2)
    lhs = (((1 + response * n) % nsquare) * mod_exp(blinding, n, nsquare)) % nsquare
    rhs = (commitment * mod_exp(value, challenge, nsquare)) % nsquare
    return lhs == rhs

# -----------------------------------------------------------------------------
# Homomorphic arithmetic
# -----------------------------------------------------------------------------

def combine(operation: str, current: int, operand: int):
    n = key_modulus()
    nsquare = n * n

    if operation == 'add':
        result = (current * operand) % nsquare
    else:
        assert operation == 'sub', 'ArithmeticFailure: unknown operation ' + str(operation)
        result = (current * mod_inverse(operand, nsquare)) % nsquare

    assert result != 0, 'ArithmeticFailure: degenerate ciphertext'
    return result

# -----------------------------------------------------------------------------
# Access control
# -----------------------------------------------------------------------------

def grant(handle: str, principal: str):
    if access_grants[handle, principal]:
        return False
    access_grants[handle, principal] = True
    return True

def grant_and_log(handle: str, principal: str):
    if grant(handle, principal):
        AccessGrantedEvent({
            'handle': handle,
            'principal': principal
        })

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(public_key: str):
    assert is_hex(public_key), 'Public key must be lower-case hex'
    n = int(public_key, 16)
    assert n >= 2 ** (MIN_KEY_BITS - 1), 'Public key too small'
    assert n % 2 == 1, 'Public key must be odd'

    metadata['name'] = "Encrypted Counter"
    metadata['operator'] = ctx.caller
    metadata['public_key'] = hex(n)[2:]
    metadata['modulus_width'] = hex_width(n)
    metadata['ciphertext_width'] = hex_width(n * n)

    initial = encode_ciphertext(ZERO_CIPHERTEXT)
    counter_state.set(initial)
    grant(ciphertext_handle(initial), ctx.caller)

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_metadata():
    return {
        'name': metadata['name'],
        'operator': metadata['operator'],
        'public_key': metadata['public_key'],
        'modulus_width': metadata['modulus_width'],
        'ciphertext_width': metadata['ciphertext_width']
    }

@export
def change_metadata(key: str, value: Any):
    assert ctx.caller == metadata['operator'], 'Only operator can set metadata'
    assert key not in LOCKED_METADATA, 'Metadata key is locked'
    metadata[key] = value

@export
def read_current():
    return counter_state.get()

@export
def current_handle():
    return ciphertext_handle(counter_state.get())

@export
def is_granted(handle: str, principal: str):
    return bool(access_grants[handle, principal])

# -----------------------------------------------------------------------------
# Core: encrypted submissions
# -----------------------------------------------------------------------------

def submit(external_ciphertext: str, proof: str, operation: str):
    # decode -> verify -> combine -> replace -> grant, nothing is written before combine
    operand = decode_ciphertext(external_ciphertext)

    assert verify_proof(operand, external_ciphertext, proof, ctx.this, ctx.caller), \
        'InvalidProof: proof does not attest this ciphertext for caller and contract'

    current = int(counter_state.get()[len(CIPHERTEXT_TAG):], 16)
    updated = encode_ciphertext(combine(operation, current, operand))
    handle = ciphertext_handle(updated)

    counter_state.set(updated)
    grant_and_log(handle, ctx.this)
    grant_and_log(handle, ctx.caller)

    CounterUpdatedEvent({
        'principal': ctx.caller,
        'handle': handle,
        'operation': operation
    })
    return handle

@export
def increment(ciphertext: str, proof: str):
    return submit(ciphertext, proof, 'add')

@export
def decrement(ciphertext: str, proof: str):
    return submit(ciphertext, proof, 'sub')

@export
def share_access(handle: str, principal: str):
    assert access_grants[handle, ctx.caller], 'Caller has no access to this ciphertext'
    grant_and_log(handle, principal)
