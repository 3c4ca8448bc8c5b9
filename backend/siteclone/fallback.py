"""
Placeholder site used when the source page cannot be acquired at all
"""

from html import escape
from typing import Optional

from .models import IdentityRecord

FALLBACK_STYLE = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
.container { max-width: 1200px; margin: 0 auto; padding: 20px; }
.header { background: #2c3e50; color: white; padding: 2rem 0; text-align: center; }
.header img { max-height: 80px; margin-bottom: 1rem; }
.hero { background: #ecf0f1; padding: 4rem 0; text-align: center; }
.content { padding: 3rem 0; }
.contact { background: #34495e; color: white; padding: 2rem 0; text-align: center; }
.btn { display: inline-block; padding: 12px 24px; background: #3498db; color: white; text-decoration: none; border-radius: 4px; margin: 10px; }
footer { background: #2c3e50; color: white; text-align: center; padding: 1rem 0; }
"""


def _paragraph(label: str, value: Optional[str]) -> str:
    if value is None:
        return ""
    return f"<p>{label}: {escape(value)}</p>"


def render_fallback_page(identity: IdentityRecord) -> str:
    """
    Build a minimal standalone page from the identity alone. Fields the
    caller did not supply are left out instead of being filled with
    placeholder text.
    """
    name = escape(identity.name)
    description = escape(identity.description) if identity.description else ""

    logo = ""
    if identity.logo:
        logo = f'<img src="{escape(identity.logo)}" alt="{name} logo" data-is-logo="true">'

    location = ""
    if identity.address is not None:
        location = f"<h3>Location</h3>\n<p>{escape(identity.address)}</p>"

    contact = "\n".join(
        line
        for line in (
            _paragraph("Phone", identity.phone),
            _paragraph("Email", identity.email),
            _paragraph("Address", identity.address),
        )
        if line
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{name}</title>
<meta name="description" content="{description}">
<style>{FALLBACK_STYLE}</style>
</head>
<body>
<header class="header">
<div class="container">
{logo}
<h1>{name}</h1>
</div>
</header>
<section class="hero">
<div class="container">
<h2>Welcome to {name}</h2>
<p>{description}</p>
<a href="#contact" class="btn">Contact Us</a>
</div>
</section>
<section class="content">
<div class="container">
{location}
</div>
</section>
<section class="contact" id="contact">
<div class="container">
<h3>Contact Information</h3>
{contact}
</div>
</section>
<footer>
<p>&copy; {name}. All rights reserved.</p>
</footer>
</body>
</html>
"""
