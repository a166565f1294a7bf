"""
``{{ VARIABLE }}`` expansion for system prompts.
"""

import re
from datetime import datetime
from typing import Dict, Optional

_VARIABLE_PATTERN = re.compile(r"\{\{\s*([A-Z0-9_]+)\s*\}\}")


def builtin_variables(
    now: Optional[datetime] = None,
    model_name: str = "",
    workspace_name: str = "",
    user_name: str = "",
) -> Dict[str, str]:
    now = now or datetime.now()
    return {
        "CURRENT_DATE": now.strftime("%Y-%m-%d"),
        "CURRENT_TIME": now.strftime("%H:%M:%S"),
        "CURRENT_DATETIME": now.strftime("%Y-%m-%d %H:%M:%S"),
        "CURRENT_DAY": now.strftime("%A"),
        "CURRENT_MONTH": now.strftime("%B"),
        "CURRENT_YEAR": now.strftime("%Y"),
        "MODEL_NAME": model_name,
        "WORKSPACE_NAME": workspace_name,
        "USER_NAME": user_name,
    }


def expand_variables(template: str, variables: Dict[str, str]) -> str:
    """
    Replace ``{{ NAME }}`` placeholders. Unknown names are left untouched.
    """
    if not template or "{{" not in template:
        return template

    def _replace(match: "re.Match") -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE_PATTERN.sub(_replace, template)
