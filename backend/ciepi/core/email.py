"""Email sending via Resend API.

Verification emails are a simple HTTP POST to Resend with a plain-text and
an HTML body. Dispatch is fire-and-forget: a failed send is logged and the
already-committed token stays valid, so the registrant can ask for a resend.
"""

import logging
from dataclasses import dataclass
from html import escape

import httpx

from ciepi.core.config import settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0

_SIGNATURE = "Equipo CIEPI - INADEH"


@dataclass(frozen=True)
class EmailContent:
    """Rendered email ready for the transport.

    Attributes:
        subject: Subject line.
        text: Plain-text body.
        html: HTML body.
    """

    subject: str
    text: str
    html: str


def render_verification_email(
    *,
    first_names: str,
    last_names: str,
    verification_url: str,
    context_label: str,
    ttl_minutes: int,
) -> EmailContent:
    """Render the email-confirmation message.

    Args:
        first_names: Registrant first names.
        last_names: Registrant last names.
        verification_url: Link carrying the plain token.
        context_label: What the confirmation is for (training name or "CIEPI").
        ttl_minutes: Minutes until the link expires.

    Returns:
        EmailContent with subject, text and HTML bodies.
    """
    full_name = f"{first_names} {last_names}".strip()
    text = (
        f"Hola {full_name},\n\n"
        f'Para completar tu inscripción en "{context_label}", necesitamos '
        "verificar tu correo electrónico.\n\n"
        "Por favor, haz clic en el siguiente enlace para verificar tu correo:\n"
        f"{verification_url}\n\n"
        f"Este enlace expirará en {ttl_minutes} minutos.\n\n"
        "Si no solicitaste esta inscripción, ignora este mensaje.\n\n"
        f"Atentamente,\n{_SIGNATURE}"
    )

    # All interpolated values are escaped; names come from user registration
    safe_name = escape(full_name)
    safe_label = escape(context_label)
    safe_url = escape(verification_url, quote=True)
    html = (
        "<!DOCTYPE html><html><body "
        'style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">'
        '<div style="max-width: 600px; margin: 0 auto; padding: 20px;">'
        '<h1 style="background-color: #0066cc; color: white; padding: 20px; '
        'text-align: center;">Verifica tu correo electrónico</h1>'
        f"<p>Hola <strong>{safe_name}</strong>,</p>"
        f"<p>Para completar tu inscripción en <strong>&quot;{safe_label}&quot;"
        "</strong>, necesitamos verificar tu correo electrónico.</p>"
        f'<p style="text-align: center;"><a href="{safe_url}" '
        'style="display: inline-block; padding: 15px 30px; '
        "background-color: #28a745; color: white; text-decoration: none; "
        'border-radius: 5px; font-weight: bold;">Verificar mi correo</a></p>'
        f"<p><strong>Importante:</strong> Este enlace expirará en "
        f"<strong>{ttl_minutes} minutos</strong>.</p>"
        '<p style="font-size: 14px; color: #666;">Si no puedes hacer clic en el '
        "botón, copia y pega este enlace en tu navegador:</p>"
        f'<p style="font-size: 12px; word-break: break-all;">{safe_url}</p>'
        '<p style="font-size: 14px; color: #666;">Si no solicitaste esta '
        "inscripción, puedes ignorar este mensaje.</p>"
        f'<p style="text-align: center; font-size: 12px; color: #666;">{_SIGNATURE}'
        "<br>Este es un correo automático, por favor no responder.</p>"
        "</div></body></html>"
    )

    return EmailContent(
        subject="Verifica tu correo electrónico - CIEPI",
        text=text,
        html=html,
    )


async def send_verification_email(
    *,
    to_email: str,
    first_names: str,
    last_names: str,
    verification_url: str,
    context_label: str,
    ttl_minutes: int,
) -> None:
    """Send an email-confirmation link via Resend.

    Never raises: transport errors are logged as warnings.

    Args:
        to_email: Recipient address (the token's contact address).
        first_names: Registrant first names.
        last_names: Registrant last names.
        verification_url: Link carrying the plain token.
        context_label: Training name or "CIEPI".
        ttl_minutes: Minutes until the link expires.
    """
    content = render_verification_email(
        first_names=first_names,
        last_names=last_names,
        verification_url=verification_url,
        context_label=context_label,
        ttl_minutes=ttl_minutes,
    )

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {settings.resend_api_key.get_secret_value()}",
                },
                json={
                    "from": settings.email_from,
                    "to": to_email,
                    "subject": content.subject,
                    "text": content.text,
                    "html": content.html,
                },
                timeout=_RESEND_TIMEOUT,
            )
            resp.raise_for_status()
    except Exception:
        logger.warning("Failed to send verification email", exc_info=True)
