from __future__ import annotations

from dataclasses import dataclass
from html import escape

TYPE_LABELS = {
  "task_assigned": "Task Assigned",
  "mentioned": "You were mentioned",
  "status_changed": "Status Changed",
  "priority_changed": "Priority Changed",
  "due_soon": "Task Due Soon",
  "overdue": "Task Overdue",
  "comment_added": "New Comment",
}
FALLBACK_LABEL = "Notification"
DESCRIPTION_LIMIT = 200


@dataclass(frozen=True)
class TaskSummary:
  title: str
  description: str | None = None


@dataclass(frozen=True)
class RenderedEmail:
  subject: str
  html: str
  text: str


def _short(description: str | None) -> str:
  d = description or ""
  if len(d) > DESCRIPTION_LIMIT:
    return d[:DESCRIPTION_LIMIT] + "..."
  return d


def render_email(
  notification_type: str,
  title: str,
  content: str | None = None,
  task: TaskSummary | None = None,
  actor_name: str | None = None,
  *,
  app_name: str = "Task Tracker",
) -> RenderedEmail:
  label = TYPE_LABELS.get(notification_type, FALLBACK_LABEL)
  footer = f"This is an automated notification from {app_name}."

  html_parts = [
    "<!DOCTYPE html>",
    "<html>",
    "<head>",
    '  <meta charset="utf-8">',
    '  <meta name="viewport" content="width=device-width, initial-scale=1.0">',
    f"  <title>{escape(title)}</title>",
    "</head>",
    '<body style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">',
    '  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 20px; border-radius: 8px 8px 0 0;">',
    f'    <h1 style="margin: 0; font-size: 24px;">{escape(label)}</h1>',
    "  </div>",
    '  <div style="background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; border: 1px solid #e0e0e0; border-top: none;">',
    f'    <h2 style="margin-top: 0; color: #333;">{escape(title)}</h2>',
  ]
  if content:
    html_parts.append(f'    <p style="color: #666;">{escape(content)}</p>')
  if task:
    html_parts.append('    <div style="background: white; padding: 15px; border-radius: 4px; margin: 15px 0; border-left: 4px solid #667eea;">')
    html_parts.append(f'      <h3 style="margin-top: 0; color: #333;">Task: {escape(task.title)}</h3>')
    if task.description:
      html_parts.append(f'      <p style="color: #666; margin-bottom: 0;">{escape(_short(task.description))}</p>')
    html_parts.append("    </div>")
  if actor_name:
    html_parts.append(f'    <p style="color: #888; font-size: 14px;">By: {escape(actor_name)}</p>')
  html_parts.extend(
    [
      '    <hr style="border: none; border-top: 1px solid #e0e0e0; margin: 20px 0;">',
      f'    <p style="color: #888; font-size: 12px; text-align: center;">{escape(footer)}</p>',
      "  </div>",
      "</body>",
      "</html>",
    ]
  )

  text_parts = [label, "", title]
  if content:
    text_parts.extend(["", content])
  if task:
    text_parts.extend(["", f"Task: {task.title}"])
    if task.description:
      text_parts.append(_short(task.description))
  if actor_name:
    text_parts.extend(["", f"By: {actor_name}"])
  text_parts.extend(["", "---", footer])

  return RenderedEmail(subject=title, html="\n".join(html_parts), text="\n".join(text_parts))
