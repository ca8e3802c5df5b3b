"""
Tech stack display helpers.

A team's stack is a free-form ``category -> field -> value(s)`` mapping. Values
are opaque strings (the stack chat can suggest tools we have never heard of),
so rendering goes through a display-name lookup with a humanizing fallback
rather than any validation against a closed set.
"""
import re
from typing import List, Dict, Any, Optional, Tuple

TECH_STACK_NAMES: Dict[str, str] = {
    # Frontend frameworks
    "react": "React",
    "nextjs": "Next.js",
    "vue": "Vue.js",
    "angular": "Angular",
    "svelte": "Svelte",
    "gatsby": "Gatsby",
    # Styling
    "tailwind": "Tailwind CSS",
    "shadcn": "shadcn/ui",
    "mui": "Material-UI",
    "chakra": "Chakra UI",
    "styled-components": "Styled Components",
    "sass": "Sass/SCSS",
    "emotion": "Emotion",
    # State management
    "redux": "Redux Toolkit",
    "zustand": "Zustand",
    "context": "React Context",
    "recoil": "Recoil",
    "jotai": "Jotai",
    # Build tools
    "vite": "Vite",
    "webpack": "Webpack",
    "parcel": "Parcel",
    "rollup": "Rollup",
    # Backend languages
    "typescript": "TypeScript/Node.js",
    "python": "Python",
    "java": "Java",
    "csharp": "C#/.NET",
    "go": "Go",
    "rust": "Rust",
    # Backend frameworks
    "express": "Express.js",
    "fastify": "Fastify",
    "nestjs": "NestJS",
    "koa": "Koa.js",
    "hapi": "Hapi.js",
    "django": "Django",
    "fastapi": "FastAPI",
    "flask": "Flask",
    "tornado": "Tornado",
    "pyramid": "Pyramid",
    "spring": "Spring Boot",
    "quarkus": "Quarkus",
    "micronaut": "Micronaut",
    "aspnet": "ASP.NET Core",
    "minimal-api": "Minimal APIs",
    "gin": "Gin",
    "echo": "Echo",
    "fiber": "Fiber",
    "actix": "Actix Web",
    "warp": "Warp",
    "rocket": "Rocket",
    # Databases
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "mongodb": "MongoDB",
    "redis": "Redis",
    "supabase": "Supabase",
    "firebase": "Firebase Firestore",
    "dynamodb": "DynamoDB",
    # Authentication
    "supabase-auth": "Supabase Auth",
    "firebase-auth": "Firebase Auth",
    "auth0": "Auth0",
    "jwt": "JWT + Custom",
    "passport": "Passport.js",
    # Cloud providers
    "vercel": "Vercel",
    "netlify": "Netlify",
    "aws": "Amazon Web Services",
    "gcp": "Google Cloud Platform",
    "azure": "Microsoft Azure",
    "railway": "Railway",
    "render": "Render",
    # Hosting
    "static": "Static Hosting",
    "serverless": "Serverless Functions",
    "containers": "Container Hosting",
    "vps": "VPS/Dedicated",
    # CDN
    "cloudflare": "Cloudflare",
    "aws-cloudfront": "AWS CloudFront",
    "vercel-edge": "Vercel Edge Network",
    # Payment
    "stripe": "Stripe",
    "paypal": "PayPal",
    "square": "Square",
    "razorpay": "Razorpay",
    # Message queues
    "redis-queue": "Redis Queue",
    "rabbitmq": "RabbitMQ",
    "aws-sqs": "AWS SQS",
    "kafka": "Apache Kafka",
    # Analytics
    "google-analytics": "Google Analytics",
    "mixpanel": "Mixpanel",
    "amplitude": "Amplitude",
    # Testing
    "jest": "Jest",
    "cypress": "Cypress",
    "playwright": "Playwright",
    "vitest": "Vitest",
}

# (section header, [(category, field, label), ...]) in render order
STACK_SECTIONS: List[Tuple[str, List[Tuple[str, str, str]]]] = [
    ("FRONTEND", [
        ("frontend", "framework", "Framework"),
        ("frontend", "styling", "Styling"),
        ("frontend", "stateManagement", "State Management"),
        ("frontend", "buildTool", "Build Tool"),
    ]),
    ("BACKEND", [
        ("backend", "language", "Language"),
        ("backend", "framework", "Framework"),
        ("backend", "database", "Database"),
        ("backend", "authentication", "Authentication"),
    ]),
    ("CLOUD & DEVOPS", [
        ("cloud", "provider", "Provider"),
        ("cloud", "hosting", "Hosting"),
        ("cloud", "cdn", "CDN"),
        ("devops", "ci_cd", "CI/CD"),
        ("devops", "containerization", "Containerization"),
        ("devops", "monitoring", "Monitoring"),
    ]),
    ("ADDITIONAL SERVICES", [
        ("optional", "payment", "Payment"),
        ("optional", "messageQueue", "Message Queue"),
        ("optional", "analytics", "Analytics"),
        ("optional", "testing", "Testing"),
    ]),
]

_SECTION_BY_CATEGORY = {cat: header for header, fields in STACK_SECTIONS for cat, _, _ in fields}
_KNOWN_FIELDS = {(cat, fld) for _, fields in STACK_SECTIONS for cat, fld, _ in fields}


def humanize(key: str) -> str:
    """'redis-queue' -> 'Redis Queue', 'ci_cd' -> 'Ci Cd'"""
    words = [w for w in re.split(r"[-_\s]+", key) if w]
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def _humanize_field(field: str) -> str:
    # camelCase field names: 'stateManagement' -> 'State Management'
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", field)
    return humanize(spaced)


def display_name(key: str) -> str:
    if key in TECH_STACK_NAMES:
        return TECH_STACK_NAMES[key]
    return humanize(key)


def _render_value(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        names = [display_name(str(v)) for v in value if v not in (None, "")]
        return ", ".join(names) if names else None
    if value in (None, ""):
        return None
    return display_name(str(value))


def render_tech_stack(stack: Optional[Dict[str, Any]]) -> List[str]:
    """
    Render a stack into section blocks ("HEADER:\\n- Label: Value\\n...").

    Known fields come first in their fixed order; any other populated field is
    appended to its category's section (or a section named after the category)
    with a humanized label. Sections with no populated field are omitted.
    """
    if not stack:
        return []

    sections: Dict[str, List[str]] = {}
    order: List[str] = []

    def add(header: str, line: str):
        if header not in sections:
            sections[header] = []
            order.append(header)
        sections[header].append(line)

    for header, fields in STACK_SECTIONS:
        for category, field, label in fields:
            group = stack.get(category)
            if not isinstance(group, dict):
                continue
            rendered = _render_value(group.get(field))
            if rendered:
                add(header, f"{label}: {rendered}")

    for category, group in stack.items():
        if not isinstance(group, dict):
            continue
        header = _SECTION_BY_CATEGORY.get(category) or humanize(category).upper()
        for field, value in group.items():
            if (category, field) in _KNOWN_FIELDS:
                continue
            rendered = _render_value(value)
            if rendered:
                add(header, f"{_humanize_field(field)}: {rendered}")

    return [f"{header}:\n" + "\n".join(f"- {line}" for line in sections[header]) for header in order]
