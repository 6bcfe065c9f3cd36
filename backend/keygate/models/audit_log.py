# keygate/models/audit_log.py
from tortoise import fields, models


class AuditLog(models.Model):
    id = fields.IntField(pk=True)
    event = fields.CharField(max_length=32, index=True)  # created / redeemed / hwid_bound / hwid_reset / blacklisted
    key = fields.CharField(max_length=64, null=True, index=True)
    user_id = fields.CharField(max_length=64, null=True)
    detail = fields.JSONField(null=True)
    created_at = fields.DatetimeField()

    class Meta:
        table = "audit_log"
