# keygate/models/license_key.py
from tortoise import fields, models


class LicenseKey(models.Model):
    """
    Issued license key.
    - key: 32-character upper-case hex token, primary key (immutable)
    - owner_user_id: Discord user id of the redeemer, set once at redemption
    - hwid: Hardware id bound on first verification, cleared by a reset
    - active: False once blacklisted (terminal)
    - expires_at: Null means the key never expires
    """
    key = fields.CharField(max_length=64, pk=True)

    owner_user_id = fields.CharField(max_length=32, null=True, index=True)
    hwid = fields.CharField(max_length=256, null=True)
    active = fields.BooleanField(default=True)

    created_at = fields.DatetimeField()
    expires_at = fields.DatetimeField(null=True)
    redeemed_at = fields.DatetimeField(null=True)

    # Provenance, each written once
    created_by = fields.CharField(max_length=64, null=True)
    blacklisted_by = fields.CharField(max_length=64, null=True)
    blacklisted_at = fields.DatetimeField(null=True)

    class Meta:
        table = "keys"
