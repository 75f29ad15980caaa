# Vault - Presentation Boundary
#
# The engine never renders anything itself. It talks to whatever front end
# is attached through this narrow interface: render a list of items, switch
# views, and ask yes/no questions before irreversible operations.

from typing import Callable, Optional, Sequence

from .models import DecryptedItem

ConfirmCallback = Callable[[str], bool]
EditCallback = Callable[[DecryptedItem], None]

VIEW_AUTH = "auth"
VIEW_DASHBOARD = "dashboard"


class VaultView:
    """Front-end hooks. Subclass and override what the front end supports."""

    def render_items(
        self,
        items: Sequence[DecryptedItem],
        on_edit: Optional[EditCallback] = None,
    ) -> None:
        pass

    def show_view(self, name: str) -> None:
        pass

    def confirm(self, message: str) -> bool:
        return False


class HeadlessView(VaultView):
    """Default view: renders nothing and declines every confirmation.

    Irreversible operations therefore need an explicit confirm callback
    when no interactive front end is attached.
    """
