import json
from typing import List, Dict, Any, Optional

from .models import TECHNICAL_TAGS, ChatMessage
from .tech_stack import render_tech_stack

# -------------------------
# LLM prompt builders
# -------------------------

# Static description of our own technical areas, used to ground tag inference
CODEBASE_CONTEXT = """
Our application is a team task-management service with the following technical areas:

FRONTEND:
- Web client with Kanban board, task modals, team management, onboarding forms, calendar
- UI/UX features: drag and drop, responsive design, dark mode support

BACKEND:
- FastAPI service exposing task, team, team member, subtask and generation endpoints
- Business logic for task management, allocation and team collaboration

DATABASE:
- PostgreSQL (Supabase)
- Tables: tasks, teams, team_members, subtasks, team_goals, task_assignments, subtask_assignments
- Features: row-level security, indexing, schema management and migrations

AUTHENTICATION:
- Bearer tokens issued by Supabase Auth
- OAuth providers (Google, GitHub) and email/password
- User metadata and profile management, protected endpoints

DEVOPS & INFRASTRUCTURE:
- Deployment configuration and environment variables
- Build and development processes

INTEGRATIONS:
- Google Gemini for task generation and tagging

TESTING & QUALITY:
- Linting, type checking, automated tests, error handling and validation

Based on this context, categorize technical tasks appropriately.
"""


def build_tech_stack_context(tech_stack: Optional[Dict[str, Any]]) -> str:
    """Instruction block describing the team's stack, or '' when nothing is selected."""
    sections = render_tech_stack(tech_stack)
    if not sections:
        return ""
    stack_listing = "\n\n".join(sections)
    return f"""
IMPORTANT: This team is using the following technology stack:

{stack_listing}

GENERATE TASKS SPECIFICALLY FOR THIS TECH STACK. Use the exact technologies mentioned above in your task descriptions and make them highly specific to the chosen stack. Examples:
- For React: mention "React components", "React hooks", "JSX", "component state"
- For Next.js: mention "Next.js API routes", "server-side rendering", "static generation"
- For Express: mention "Express routes", "middleware", "Node.js server"
- For PostgreSQL: mention "PostgreSQL tables", "SQL queries", "database migrations"
- For MongoDB: mention "MongoDB collections", "aggregation pipelines", "document schemas"
- For cloud services: mention specific deployment patterns and service integrations

Tailor each task title and description to leverage the specific capabilities and patterns of these technologies."""


def build_task_prompt(goal: str, tech_stack: Optional[Dict[str, Any]] = None) -> str:
    """Prompt asking for a sequenced, team-scoped task list as a JSON array."""
    if not goal or not goal.strip():
        raise ValueError("goal must not be empty")
    stack_context = build_tech_stack_context(tech_stack)

    prompt = f"""
You are an expert technical project manager. A development team wants to achieve this goal: "{goal.strip()}"
{stack_context}

Produce a SEQUENCED list of a reasonable number of TECHNICAL tasks (choose an appropriate count based on the goal's complexity; typically 8-18). Do NOT force a fixed number if it would create artificial splitting or over-broad aggregation.

JUSTIFICATION FOR EVERYTHING:
- Each task directly contributes to the stated goal with a specific purpose.
- Every technology choice or implementation detail has a reason for being included.
- Every task is necessary, not "nice to have".
- The order of tasks follows their technical dependencies.
- Each description briefly states WHY the task is needed to achieve the goal.

Core requirements:
- Tasks must be technical (code, infrastructure, databases, APIs, CI/CD, tests, deployments, integrations).
- Every task is TEAM-SCOPED and assigned to EXACTLY ONE primary team (e.g., "Backend Team", "Frontend Team", "DevOps Team", "Data Team", "QA Team").
- Tasks are MUTUALLY EXCLUSIVE and collectively cover the path to the goal.
- Keep each task at the team level: broad enough for the team to derive subtasks, not spanning multiple lifecycle phases.
- Order tasks from foundational setup to final deployment.
- Exclude non-technical items (meetings, stakeholder reviews, documentation-only tasks).

Output format (must follow exactly):
Return ONLY a JSON array of task objects (no extra text). Each task object must include:
- "title": short technical title including relevant stack names and the team in parentheses
- "description": 1-2 sentence technical description that explains WHY this task is essential for the goal and names the intended team
- "estimated_days": integer 1-15 representing effort (number)

Example:
[
  {{
    "title": "Initialize PostgreSQL schema and migrations (Backend Team)",
    "description": "Backend Team defines the database schema for core entities because all data storage must exist before API or frontend work can begin.",
    "estimated_days": 3
  }}
]

Return only the JSON array, no additional explanation or text.
"""
    return prompt


def build_subtask_prompt(title: str, description: Optional[str] = None) -> str:
    """Prompt asking for ordered subtasks of one task as a JSON array."""
    return f"""
You are an expert project manager. Break down this task into specific, actionable subtasks that follow a LOGICAL SEQUENTIAL ORDER:

Task Title: "{title}"
Task Description: "{description or 'No description provided'}"

Requirements:
1. SEQUENTIAL ORDER: the first subtask in the array is the first thing to do, the last subtask is the final step. Deadlines are assigned in this order.
2. JUSTIFICATION: every subtask is essential for completing the main task, and its description says WHY (1-2 sentences).
3. Each subtask is small, specific, actionable, and focused on one deliverable.
4. Decompose so that several team members can work in parallel without conflicts.
5. Generate as many or as few subtasks as the scope of the task needs.

Format your response as a JSON array of subtask objects, where each subtask has:
- "title": a clear, concise subtask title (under 60 characters)
- "description": what needs to be accomplished and why it is necessary

Example format:
[
  {{
    "title": "Design the tasks table schema",
    "description": "Define columns and indexes for tasks because every later endpoint reads and writes this table."
  }}
]

Return only the JSON array, no additional text.
"""


def build_tag_prompt(title: str, description: Optional[str] = None) -> str:
    return f"""
You are an expert technical project manager analyzing a task to automatically assign relevant technical tags.

TASK TO ANALYZE:
Title: "{title}"
Description: "{description or 'No description provided'}"

AVAILABLE TAGS: {', '.join(TECHNICAL_TAGS)}

CODEBASE CONTEXT:
{CODEBASE_CONTEXT}

INSTRUCTIONS:
1. Analyze the task title and description
2. Determine which technical areas this task belongs to based on the codebase context
3. Assign 1-3 most relevant tags from the available tags list
4. Consider the technical implementation required, not just keywords

EXAMPLES:
- "Implement user login API" -> ["Backend", "Authentication", "API"]
- "Create task card component" -> ["Frontend", "UI/UX"]
- "Set up database tables for teams" -> ["Database", "Backend"]
- "Deploy application to production" -> ["DevOps", "Infrastructure"]
- "Write unit tests for API endpoints" -> ["Testing", "Backend"]

Return ONLY a JSON array of tags, no additional text:
["tag1", "tag2", "tag3"]
"""


def build_stack_chat_prompt(
    message: str,
    conversation: Optional[List[ChatMessage]] = None,
    current_stack: Optional[Dict[str, Any]] = None,
    force_suggestions: bool = False,
) -> str:
    """Advisory chat prompt; the model ends its reply with a SUGGESTIONS array."""
    force_block = ""
    force_rule = ""
    if force_suggestions:
        force_block = (
            'IMPORTANT: The user has enabled "Force stack suggestions" mode. You MUST provide specific '
            "tech stack recommendations in EVERY response, regardless of the user's question. "
            "Always end your response with a SUGGESTIONS array.\n\n"
        )
        force_rule = "\n- ALWAYS provide specific tech stack suggestions in EVERY response."

    system_prompt = f"""You are a friendly, expert tech stack consultant helping users choose the best technologies for their project.

Current user's stack selections: {json.dumps(current_stack or {}, indent=2)}

{force_block}Instructions:
- Ask clarifying questions early.
- Provide explanations with trade-offs.{force_rule}
- End with a SUGGESTIONS array (plain text, JS-like) exactly in the format:
SUGGESTIONS: [ {{category: 'frontend', field: 'framework', value: 'nextjs', name: 'Next.js', rationale: 'Reason'}}, ... ]
- Include a full stack (frontend framework + styling, backend language + database, cloud provider).
- Do not modify stack directly; only suggest.
- Keep tone helpful & concise."""

    history = "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in (conversation or [])
    )
    return f"{system_prompt}\n\nPrevious conversation:\n{history}\n\nUser: {message}"
