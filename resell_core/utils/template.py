from jinja2 import Environment, PackageLoader, select_autoescape

from resell_core.config import settings

env = Environment(
    loader=PackageLoader("resell_core", "templates"),
    autoescape=select_autoescape(["html"])
)


def render_template(template_path: str, **context) -> str:
    template = env.get_template(template_path)
    return template.render(**context)


def render_admin_notification(event) -> str:
    """HTML body of the admin email sent for a notification event."""
    return render_template(
        "emails/admin_notification.html",
        store_name=settings.STORE_NAME,
        title=event.title,
        message=event.message,
        reference_id=event.reference_id,
        reference_model=event.reference_model,
        data=event.data,
    )
