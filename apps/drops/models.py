"""Models for the drops app.

BlobMeta - fast-lookup metadata (expiry, payment flag); authoritative for existence
BlobData - object bodies when the DB storage backend is selected
RateCounter - per (action, client) request counters with a TTL

All instants are epoch milliseconds.
"""
from tortoise import fields, models


class BlobMeta(models.Model):
    id = fields.CharField(pk=True, max_length=64)
    created_at = fields.BigIntField()
    expires_at = fields.BigIntField()
    has_payment = fields.BooleanField(default=False)
    price_usd = fields.FloatField(null=True)
    # store-level TTL deadline; rows past it are purged by the evictor
    ttl_expires_at = fields.BigIntField(index=True)

    class Meta:
        default_connection = "default"
        table = "blobs_meta"


class BlobData(models.Model):
    """Stores ciphertext when using the database storage backend.

    created_at/expires_at are the side-carried timestamps the reconciler reads;
    expires_at is null for objects written before expiry tagging.
    """
    id = fields.CharField(pk=True, max_length=64)
    data = fields.BinaryField()
    created_at = fields.BigIntField()
    expires_at = fields.BigIntField(null=True)

    class Meta:
        default_connection = "default"
        table = "blobs_data"


class RateCounter(models.Model):
    key = fields.CharField(pk=True, max_length=255)
    count = fields.IntField(default=0)
    expires_at = fields.BigIntField(index=True)

    class Meta:
        default_connection = "default"
        table = "rate_counters"
