# keygate/models/key_user.py
"""
Database model for key owners.
One row per Discord user who has redeemed at least one key.
"""
from tortoise import fields, models


class KeyUser(models.Model):
    """
    Key owner aggregate.

    Created lazily on first redemption and updated in place afterwards.
    `keys` is an ordered, append-only list of key tokens; the authoritative
    owner of a key is still LicenseKey.owner_user_id.
    """
    user_id = fields.CharField(max_length=32, pk=True)  # Discord snowflake as string
    keys = fields.JSONField(default=list)  # Owned key tokens, in redemption order
    hwid_last_reset_at = fields.DatetimeField(null=True)  # Drives the reset cooldown
    hwid_reset_count = fields.IntField(default=0)  # Audit only
    created_at = fields.DatetimeField()

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "users"
