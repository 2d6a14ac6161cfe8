"""Address store: resolves a user's saved address into a shipping snapshot."""

from ..db import Database
from ..errors import AddressIncomplete, AddressNotFound, AddressNotOwned
from ..orders.domain import ShippingAddress
from .models import AddressModel


class SqlAddressStore:
    """Address port backed by the ``addresses`` table."""

    def __init__(self, db: Database):
        self.db = db

    def validate_user_address(self, user_id: int, address_id: int) -> ShippingAddress:
        """Return the address as a value copy after checking owner and completeness.

        Args:
            user_id: Requesting user.
            address_id: Saved address to ship to.

        Returns:
            ShippingAddress: Snapshot copied by value.

        Raises:
            AddressNotFound: No such address.
            AddressNotOwned: The address belongs to another user.
            AddressIncomplete: A required field is blank.
        """
        with self.db.session() as s:
            row = s.get(AddressModel, address_id)
            if row is None:
                raise AddressNotFound(address_id)
            if row.user_id != user_id:
                raise AddressNotOwned(address_id)
            address = ShippingAddress(
                street=row.street or "",
                city=row.city or "",
                state=row.state or "",
                postal_code=row.postal_code or "",
                country=row.country or "",
            )
        missing = address.missing_fields()
        if missing:
            raise AddressIncomplete(missing)
        return address
