"""Repository query helpers."""

from protean.utils.globals import current_domain

PAGE_SIZE = 100


def fetch_all(aggregate_cls, order_by=None, page_size=PAGE_SIZE, **filters):
    """Every record matching ``filters``.

    Querysets are capped at one page by default, so histories and sweeps
    read page by page until a short page comes back.
    """
    repo = current_domain.repository_for(aggregate_cls)
    records = []
    offset = 0
    while True:
        queryset = repo._dao.query.filter(**filters) if filters else repo._dao.query
        if order_by:
            queryset = queryset.order_by(order_by)
        page = queryset.offset(offset).limit(page_size).all().items
        records.extend(page)
        if len(page) < page_size:
            return records
        offset += page_size
