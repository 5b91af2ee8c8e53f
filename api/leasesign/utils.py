import base64, binascii, hashlib, json, re
from itsdangerous import URLSafeSerializer
from .config import SECRET_KEY
from .errors import ValidationError

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_PNG_DATA_URL = re.compile(r"^data:image/png;base64,(.+)$", re.DOTALL)

def b64png_to_bytes(data_url: str) -> bytes:
    # expects "data:image/png;base64,....."
    m = _PNG_DATA_URL.match((data_url or "").strip())
    if not m:
        raise ValidationError("signature must be a PNG data URL")
    try:
        data = base64.b64decode(m.group(1), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("signature is not valid base64")
    if not data.startswith(PNG_MAGIC):
        raise ValidationError("signature does not decode to a PNG image")
    return data

def bytes_to_b64png(data: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(data).decode("ascii")

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(SECRET_KEY, salt="signing")

def make_token(payload: dict) -> str:
    return _serializer().dumps(payload)

def read_token(token: str) -> dict:
    return _serializer().loads(token)
