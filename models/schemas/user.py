from marshmallow import Schema, fields, pre_load, validates, validate, ValidationError


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


class RegisterSchema(Schema):
    name = fields.String(required=True, validate=validate.Length(min=2))
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    username = fields.String(load_default=None, allow_none=True)
    avatar = fields.Url(load_default=None, allow_none=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data["email"] = _norm_email(data["email"])
        return data

    @validates("password")
    def validate_password(self, value, **kwargs):
        if len(value) < 6:
            raise ValidationError("Password must be at least 6 characters long.")


class LoginSchema(Schema):
    email_or_username = fields.String(required=True)
    password = fields.String(required=True, load_only=True)

    @pre_load
    def accept_aliases(self, data, **kwargs):
        # clients may send the identifier as "email" or "username"
        if isinstance(data, dict) and "email_or_username" not in data:
            ident = data.get("emailOrUsername") or data.get("email") or data.get("username")
            data = {k: v for k, v in data.items() if k not in ("email", "username", "emailOrUsername")}
            if ident is not None:
                data["email_or_username"] = ident
        return data


class ProfileUpdateSchema(Schema):
    name = fields.String(validate=validate.Length(min=2))
    avatar = fields.Url(allow_none=True)


class UsernameSchema(Schema):
    username = fields.String(required=True, validate=validate.Length(min=1, max=64))


class RoleSchema(Schema):
    role = fields.String(required=True, validate=validate.OneOf(["USER", "ADMIN", "SUPERADMIN"]))


class UserOutSchema(Schema):
    """Public profile; never carries the password hash or OTP fields."""
    id = fields.String(allow_none=False)
    email = fields.String()
    username = fields.String(allow_none=True)
    name = fields.String(allow_none=True)
    avatar = fields.String(allow_none=True)
    role = fields.String()
    email_verified = fields.Boolean()
    is_active = fields.Boolean()
    google_linked = fields.Method("get_google_linked")
    discord_linked = fields.Method("get_discord_linked")
    created_at = fields.DateTime(allow_none=True)
    updated_at = fields.DateTime(allow_none=True)

    def get_google_linked(self, obj):
        return bool(getattr(obj, "google_id", None))

    def get_discord_linked(self, obj):
        return bool(getattr(obj, "discord_id", None))
