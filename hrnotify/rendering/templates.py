LAYOUT_HTML = """\
<!DOCTYPE html>
<html lang="en" xmlns="http://www.w3.org/1999/xhtml">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{% block title %}{% endblock %}</title>
</head>
<body style="margin:0; padding:0; background-color:#f4f4f5; font-family:Calibri,Arial,Helvetica,sans-serif;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color:#f4f4f5;">
    <tr><td align="center" style="padding:24px 16px;">
      <table role="presentation" width="600" cellpadding="0" cellspacing="0"
             style="background-color:#ffffff; border-radius:8px; box-shadow:0 1px 3px rgba(0,0,0,0.1);">
        <!-- Header -->
        <tr><td style="background-color:#1e40af; padding:20px 32px; border-radius:8px 8px 0 0;">
          <h1 style="margin:0; color:#ffffff; font-size:20px; font-weight:600;">{{ self.title() }}</h1>
        </td></tr>
        <!-- Body -->
        <tr><td style="padding:32px; color:#374151; font-size:15px; line-height:1.6;">
          {% block content %}{% endblock %}
          {% if details is defined and details %}
          <table role="presentation" width="100%" cellpadding="0" cellspacing="0"
                 style="background-color:#f9fafb; border-radius:6px; margin:16px 0;">
            {% for label, value in details %}
            <tr>
              <td style="padding:6px 20px; color:#6b7280; font-size:13px; width:120px;">{{ label }}</td>
              <td style="padding:6px 20px; color:#111827; font-size:14px; font-weight:600;">{{ value }}</td>
            </tr>
            {% endfor %}
          </table>
          {% endif %}
          {% if link is defined and link %}
          <p style="margin:16px 0 0;"><a href="{{ link }}" style="color:#1e40af;">Open in HRMS</a></p>
          {% endif %}
        </td></tr>
        <!-- Footer -->
        <tr><td style="padding:16px 32px; border-top:1px solid #e5e7eb;">
          <p style="margin:0; color:#9ca3af; font-size:11px; line-height:1.5;">
            This is an automated message from the HRMS. Please do not reply.
          </p>
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>"""


def _body(title: str, details: str, content: str) -> str:
    """Child template of the layout. ``details`` must be set at top level to reach it."""
    return (
        '{% extends "layout.html" %}'
        + (f"{{% set details = {details} %}}" if details else "")
        + f"{{% block title %}}{title}{{% endblock %}}"
        + f"{{% block content %}}{content}{{% endblock %}}"
    )


def _comments(label: str = "Comments") -> str:
    return (
        "{% if comments is defined and comments %}"
        f'<p style="margin:16px 0 0;"><strong>{label}:</strong> {{{{ comments }}}}</p>'
        "{% endif %}"
    )


_LEAVE_DETAILS = "[('Leave type', leave_type), ('From', start_date | date), ('To', end_date | date)]"

# kind -> {subject, body, inapp_title, inapp_message}
EMAIL_TEMPLATES: dict[str, dict[str, str]] = {
    "leave_submitted": {
        "subject": "Leave request from {{ employee_name }}: {{ start_date | date }} to {{ end_date | date }}",
        "body": _body(
            "Leave request submitted",
            _LEAVE_DETAILS,
            "<p>{{ employee_name }} has requested {{ leave_type }} leave and is waiting for your approval.</p>"
            + _comments("Reason"),
        ),
        "inapp_title": "Leave request submitted",
        "inapp_message": (
            "{{ employee_name }} requested {{ leave_type }} leave"
            " from {{ start_date | date }} to {{ end_date | date }}."
        ),
    },
    "leave_approved": {
        "subject": "Your leave from {{ start_date | date }} to {{ end_date | date }} was approved",
        "body": _body(
            "Leave approved",
            _LEAVE_DETAILS,
            "<p>Hello {{ employee_name }}, your {{ leave_type }} leave was approved by {{ approver_name }}.</p>"
            + _comments(),
        ),
        "inapp_title": "Leave approved",
        "inapp_message": (
            "Your {{ leave_type }} leave from {{ start_date | date }} to {{ end_date | date }}"
            " was approved by {{ approver_name }}."
        ),
    },
    "leave_rejected": {
        "subject": "Your leave from {{ start_date | date }} to {{ end_date | date }} was rejected",
        "body": _body(
            "Leave rejected",
            _LEAVE_DETAILS,
            "<p>Hello {{ employee_name }}, your {{ leave_type }} leave was rejected by {{ approver_name }}.</p>"
            + _comments("Reason"),
        ),
        "inapp_title": "Leave rejected",
        "inapp_message": (
            "Your {{ leave_type }} leave from {{ start_date | date }} to {{ end_date | date }}"
            " was rejected by {{ approver_name }}."
        ),
    },
    "leave_withdrawn": {
        "subject": "{{ employee_name }} withdrew a leave request",
        "body": _body(
            "Leave withdrawn",
            _LEAVE_DETAILS,
            "<p>{{ employee_name }} has withdrawn the {{ leave_type }} leave request below. No action is needed.</p>",
        ),
        "inapp_title": "Leave withdrawn",
        "inapp_message": (
            "{{ employee_name }} withdrew the leave request from {{ start_date | date }} to {{ end_date | date }}."
        ),
    },
    "kra_assigned": {
        "subject": "New KRAs assigned for {{ cycle_name }}",
        "body": _body(
            "KRAs assigned",
            "[('Cycle', cycle_name), ('Assigned by', assigned_by)]",
            "<p>Hello {{ employee_name }}, your key result areas for {{ cycle_name }} are ready for review.</p>",
        ),
        "inapp_title": "KRAs assigned",
        "inapp_message": "{{ assigned_by }} assigned your KRAs for {{ cycle_name }}.",
    },
    "kra_submitted": {
        "subject": "{{ employee_name }} submitted KRAs for {{ cycle_name }}",
        "body": _body(
            "KRAs submitted",
            "[('Employee', employee_name), ('Cycle', cycle_name)]",
            "<p>{{ employee_name }} has completed the self-assessment for every KRA in {{ cycle_name }}"
            " and it is ready for your evaluation.</p>",
        ),
        "inapp_title": "KRAs submitted for evaluation",
        "inapp_message": "{{ employee_name }} submitted all KRAs for {{ cycle_name }}.",
    },
    "kra_evaluated": {
        "subject": "Your KRA evaluation for {{ cycle_name }} is complete",
        "body": _body(
            "KRA evaluation complete",
            "[('Cycle', cycle_name), ('Evaluated by', evaluator_name)]"
            " + ([('Overall score', score)] if score is defined and score is not none else [])",
            "<p>Hello {{ employee_name }}, {{ evaluator_name }} has finished evaluating your KRAs.</p>"
            + _comments("Feedback"),
        ),
        "inapp_title": "KRA evaluation complete",
        "inapp_message": "{{ evaluator_name }} completed your KRA evaluation for {{ cycle_name }}.",
    },
    "policy_assigned": {
        "subject": "Action required: acknowledge {{ policy_title }}",
        "body": _body(
            "Policy acknowledgement required",
            "[('Policy', policy_title)] + ([('Due', due_date | date)] if due_date is defined and due_date else [])",
            "<p>Hello {{ employee_name }}, please read and acknowledge the policy below.</p>",
        ),
        "inapp_title": "Policy assigned",
        "inapp_message": "Please read and acknowledge {{ policy_title }}.",
    },
    "policy_acknowledged": {
        "subject": "{{ employee_name }} acknowledged {{ policy_title }}",
        "body": _body(
            "Policy acknowledged",
            "[('Employee', employee_name), ('Policy', policy_title)]",
            "<p>{{ employee_name }} has acknowledged {{ policy_title }}.</p>",
        ),
        "inapp_title": "Policy acknowledged",
        "inapp_message": "{{ employee_name }} acknowledged {{ policy_title }}.",
    },
    "system_notification": {
        "subject": "{{ title }}",
        "body": _body("{{ title }}", "", "<p>{{ message }}</p>"),
        "inapp_title": "{{ title }}",
        "inapp_message": "{{ message }}",
    },
}
