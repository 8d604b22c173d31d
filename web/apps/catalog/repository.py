"""Read access to catalog tracks for the sales and payments flows.

Catalog CRUD lives outside this project; the purchase lifecycle only needs
to load a track by id to validate its price and snapshot its title.
"""

from .models import TrackModel


class TrackRepository:
    """Thin lookup wrapper over ``TrackModel``."""

    def get(self, track_id: str | None) -> TrackModel | None:
        """Return the track with ``track_id`` or None when absent or blank."""
        if not track_id:
            return None
        return TrackModel.objects.filter(pk=track_id).first()
