"""Color tokens for transcript rendering."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CliTheme:
    """Rich colors keyed by what is being shown: roles, tool states, run outcomes."""

    primary: str = "#E6EDF3"
    muted: str = "#7F848E"
    warning: str = "#E5C07B"
    error: str = "#E06C75"

    # Message roles
    user: str = "#56B6C2"
    assistant: str = "#E6EDF3"
    system: str = "#C678DD"

    # Tool calls
    tool_running: str = "#61AFEF"
    tool_complete: str = "#98C379"
    tool_result: str = "#ABB2BF"

    compaction: str = "#D19A66"

    def role_color(self, role: str) -> str:
        return {"user": self.user, "assistant": self.assistant, "system": self.system}.get(
            role, self.primary
        )

    def tool_status_color(self, status: str) -> str:
        if status == "error":
            return self.error
        if status == "complete":
            return self.tool_complete
        return self.tool_running

    def run_outcome_color(self, status: str) -> str:
        """Aborted runs are a warning; anything else that failed is an error."""
        return self.warning if status == "aborted" else self.error


THEME = CliTheme()
