"""
Ed25519 - RFC 8032 signing over the twisted Edwards form of Curve25519.

Points are kept in extended coordinates (X, Y, Z, T) with x = X/Z,
y = Y/Z, x*y = T/Z. Scalar multiplication is a fixed-length ladder with a
mask-based conditional swap, so the sequence of field operations does not
depend on the secret scalar.

Secret keys use the 64-byte packed form `seed || public_key`.
"""

import hashlib

# ============================================
# Curve Constants
# ============================================

P = 2**255 - 19
L = 2**252 + 27742317777372353535851937790883648493  # group order
D = (-121665 * pow(121666, P - 2, P)) % P
D2 = (2 * D) % P
SQRT_M1 = pow(2, (P - 1) // 4, P)

_BASE_X = 15112221349535400772501151409588531511454012693041857206046113283949847762202
_BASE_Y = 46316835694926478169428394003475163141307993866256225615783033603165251855960

SEED_SIZE = 32
PUBLIC_KEY_SIZE = 32
SECRET_KEY_SIZE = 64
SIGNATURE_SIZE = 64

_SCALAR_BITS = 256

Point = tuple[int, int, int, int]

IDENTITY: Point = (0, 1, 1, 0)
BASE: Point = (_BASE_X, _BASE_Y, 1, (_BASE_X * _BASE_Y) % P)


# ============================================
# Point Arithmetic
# ============================================

def point_add(p: Point, q: Point) -> Point:
    """
    Unified addition (add-2008-hwcd-3).

    Complete on Ed25519, so it also serves as doubling and the ladder
    never needs a separate code path for equal inputs.
    """
    x1, y1, z1, t1 = p
    x2, y2, z2, t2 = q
    a = ((y1 - x1) * (y2 - x2)) % P
    b = ((y1 + x1) * (y2 + x2)) % P
    c = (t1 * D2 * t2) % P
    d = (z1 * 2 * z2) % P
    e = b - a
    f = d - c
    g = d + c
    h = b + a
    return ((e * f) % P, (g * h) % P, (f * g) % P, (e * h) % P)


def _cswap(p: Point, q: Point, bit: int) -> tuple[Point, Point]:
    """Swap p and q when bit is 1, using a mask instead of a branch."""
    mask = -bit
    out_p = []
    out_q = []
    for a, b in zip(p, q):
        t = mask & (a ^ b)
        out_p.append(a ^ t)
        out_q.append(b ^ t)
    return tuple(out_p), tuple(out_q)


def scalar_mult(k: int, point: Point) -> Point:
    """Compute k*point with a Montgomery ladder over all 256 bits."""
    r0 = IDENTITY
    r1 = point
    for i in reversed(range(_SCALAR_BITS)):
        bit = (k >> i) & 1
        r0, r1 = _cswap(r0, r1, bit)
        r1 = point_add(r0, r1)
        r0 = point_add(r0, r0)
        r0, r1 = _cswap(r0, r1, bit)
    return r0


def point_equal(p: Point, q: Point) -> bool:
    x1, y1, z1, _ = p
    x2, y2, z2, _ = q
    return (x1 * z2 - x2 * z1) % P == 0 and (y1 * z2 - y2 * z1) % P == 0


# ============================================
# Encoding
# ============================================

def compress(point: Point) -> bytes:
    """Encode a point as 32 bytes: y little-endian with the sign of x in bit 255."""
    x, y, z, _ = point
    z_inv = pow(z, P - 2, P)
    x = (x * z_inv) % P
    y = (y * z_inv) % P
    return (y | ((x & 1) << 255)).to_bytes(32, "little")


def _recover_x(y: int, sign: int) -> int | None:
    if y >= P:
        return None
    x2 = ((y * y - 1) * pow(D * y * y + 1, P - 2, P)) % P
    if x2 == 0:
        return None if sign else 0
    x = pow(x2, (P + 3) // 8, P)
    if (x * x - x2) % P != 0:
        x = (x * SQRT_M1) % P
    if (x * x - x2) % P != 0:
        return None
    if (x & 1) != sign:
        x = P - x
    return x


def decompress(data: bytes) -> Point | None:
    """Decode 32 bytes to a point, or None if they are not a valid encoding."""
    if len(data) != 32:
        return None
    value = int.from_bytes(data, "little")
    sign = value >> 255
    y = value & ((1 << 255) - 1)
    x = _recover_x(y, sign)
    if x is None:
        return None
    return (x, y, 1, (x * y) % P)


def is_on_curve(data: bytes) -> bool:
    """True if the 32 bytes decompress to a point on the curve."""
    return decompress(bytes(data)) is not None


# ============================================
# Keys and Signatures
# ============================================

def _sha512_int(*parts: bytes) -> int:
    h = hashlib.sha512()
    for part in parts:
        h.update(part)
    return int.from_bytes(h.digest(), "little")


def _expand_seed(seed: bytes) -> tuple[int, bytes]:
    """SHA-512 the seed and clamp the lower half into the secret scalar."""
    digest = bytearray(hashlib.sha512(seed).digest())
    digest[0] &= 248
    digest[31] &= 127
    digest[31] |= 64
    scalar = int.from_bytes(digest[:32], "little")
    prefix = bytes(digest[32:])
    digest[:] = bytes(len(digest))
    return scalar, prefix


def derive_public(seed: bytes) -> bytes:
    """Public key for a 32-byte secret seed."""
    if len(seed) != SEED_SIZE:
        raise ValueError(f"Ed25519 seed must be {SEED_SIZE} bytes, got {len(seed)}")
    scalar, _ = _expand_seed(bytes(seed))
    return compress(scalar_mult(scalar, BASE))


def keypair_from_seed(seed: bytes) -> bytes:
    """Packed 64-byte secret key (seed || public key)."""
    return bytes(seed) + derive_public(seed)


def sign(message: bytes, secret_key: bytes) -> bytes:
    """
    Sign a message with a 64-byte secret key.

    Returns R || S. The public half of the secret key must match the seed;
    a mismatched pair would leak the scalar through two signatures.
    """
    if len(secret_key) != SECRET_KEY_SIZE:
        raise ValueError(f"Ed25519 secret key must be {SECRET_KEY_SIZE} bytes, got {len(secret_key)}")
    message = bytes(message)
    seed = bytes(secret_key[:32])
    scalar, prefix = _expand_seed(seed)
    public_key = compress(scalar_mult(scalar, BASE))
    if public_key != bytes(secret_key[32:]):
        raise ValueError("Secret key does not match its public key")

    r = _sha512_int(prefix, message) % L
    r_enc = compress(scalar_mult(r, BASE))
    k = _sha512_int(r_enc, public_key, message) % L
    s = (r + k * scalar) % L
    return r_enc + s.to_bytes(32, "little")


def verify(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """Check an Ed25519 signature. Malformed input returns False."""
    if len(signature) != SIGNATURE_SIZE or len(public_key) != PUBLIC_KEY_SIZE:
        return False
    a = decompress(bytes(public_key))
    r = decompress(bytes(signature[:32]))
    if a is None or r is None:
        return False
    s = int.from_bytes(signature[32:], "little")
    if s >= L:
        return False
    k = _sha512_int(bytes(signature[:32]), bytes(public_key), bytes(message)) % L
    left = scalar_mult(s, BASE)
    right = point_add(r, scalar_mult(k, a))
    return point_equal(left, right)
