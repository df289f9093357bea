from __future__ import annotations

from tortoise import fields, models


class User(models.Model):
    """Database model for workflow owners."""

    id = fields.IntField(primary_key=True)
    user_id = fields.CharField(max_length=255, unique=True, db_index=True)  # external identity id
    email = fields.CharField(max_length=320, null=True)
    first_name = fields.CharField(max_length=255, null=True)
    last_name = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "users"
        ordering = ("user_id",)

    def __str__(self) -> str:
        return f"User<{self.user_id}>"


class Credential(models.Model):
    """
    Encrypted integration credential owned by a user.

    ``encrypted_data`` holds a Fernet token of a JSON object (access tokens,
    API keys, basic-auth pairs) and is only ever decrypted through
    ``shared.credentials.CredentialResolver``.
    """

    id = fields.IntField(primary_key=True)
    user = fields.ForeignKeyField("models.User", related_name="credentials")
    app_id = fields.CharField(max_length=100)
    name = fields.CharField(max_length=255, null=True)
    encrypted_data = fields.TextField()
    # False until verified (or after a failed check); None when the app needs no verification
    is_valid = fields.BooleanField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "credentials"

    def __str__(self) -> str:
        return f"Credential<{self.id}:{self.app_id}>"


__all__ = ["User", "Credential"]
