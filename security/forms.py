from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, Email, Length


def _strip(value):
    # JSON bodies can carry numbers or lists; validators expect text
    return str(value).strip() if value is not None else value


class _JSONForm(FlaskForm):
    """Forms fed from JSON bodies; the session cookie is SameSite so no CSRF token."""

    class Meta:
        csrf = False


class MagicLinkRequestForm(_JSONForm):
    email = StringField("Email", filters=[_strip], validators=[DataRequired(), Length(max=255), Email()])


class MagicLinkTokenForm(_JSONForm):
    token = StringField("Token", filters=[_strip], validators=[DataRequired(), Length(max=512)])
