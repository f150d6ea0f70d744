from marshmallow import Schema, fields, pre_load, validates, validate, ValidationError

from models.schemas.user import _norm_email

OTP_FORMAT = validate.Regexp(r"^[0-9]{6}$", error="OTP must be a 6-digit code.")


def _check_password_length(value):
    if len(value) < 6:
        raise ValidationError("Password must be at least 6 characters long.")


class EmailSchema(Schema):
    email = fields.Email(required=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data["email"] = _norm_email(data["email"])
        return data


class OtpSchema(EmailSchema):
    otp = fields.String(required=True, validate=OTP_FORMAT)


class ResetPasswordSchema(EmailSchema):
    new_password = fields.String(required=True, load_only=True)

    @validates("new_password")
    def validate_new_password(self, value, **kwargs):
        _check_password_length(value)


class ChangePasswordSchema(Schema):
    current_password = fields.String(required=True, load_only=True)
    new_password = fields.String(required=True, load_only=True)

    @validates("new_password")
    def validate_new_password(self, value, **kwargs):
        _check_password_length(value)


class SocialLoginSchema(Schema):
    provider = fields.String(load_default="google", validate=validate.OneOf(["google", "discord"]))
    token = fields.String(required=True)


class LogoutAllSchema(Schema):
    user_id = fields.String(load_default=None, allow_none=True)


class SessionOutSchema(Schema):
    id = fields.String()
    device_info = fields.String(allow_none=True)
    ip_address = fields.String(allow_none=True)
    created_at = fields.DateTime()
    last_activity = fields.DateTime(allow_none=True)
    expires_at = fields.DateTime()
    current = fields.Boolean()
