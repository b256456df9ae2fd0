import uuid

# id prefixes per entity, e.g. "lst_3f2a..."
LISTING = "lst"
USER = "usr"
DOCUMENT = "doc"
AUDIT = "aud"
NOTIFICATION = "ntf"
OUTBOX = "obx"
IDEMPOTENCY = "idm"


def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"
