from scheduling.errors import AuthorizationError


class ReservationAccessPolicy:
    """
    Row-level rule for direct (non-privileged) reservation mutations.

    Owners may update reservations of their own facility only when the
    deployment grants them direct updates; customers may only cancel their
    own reservations. Everything else has to go through the privileged
    backend route, which re-checks ownership itself.
    """

    def __init__(self, allow_owner_updates: bool = True):
        self.allow_owner_updates = allow_owner_updates

    def check_update(self, actor_id, facility_owner_id, reservation_user_id, status: str) -> None:
        if actor_id is None:
            raise AuthorizationError("Authentication required")

        if actor_id == facility_owner_id:
            if not self.allow_owner_updates:
                raise AuthorizationError("Direct owner updates are blocked by policy")
            return

        if actor_id == reservation_user_id and status == "cancelled":
            return

        raise AuthorizationError("Not allowed to update this reservation")

    def check_notify(self, actor_id, recipient_id, allow_cross_user: bool) -> None:
        if actor_id is not None and actor_id != recipient_id and not allow_cross_user:
            raise AuthorizationError("Cannot create notifications for another user")
