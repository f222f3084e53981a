# hb_core/common/api/pagination.py
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class ListPagination(PageNumberPagination):
    """`?page=` / `?page_size=`; a stay rarely has more than a few hundred items."""
    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 500


def paginate(request, queryset, serializer_class, *, context: dict | None = None) -> Response:
    """
    Paged list response shaped {count, next, previous, results}.
    Serializers get the request in their context.
    """
    ctx = {"request": request, **(context or {})}
    pager = ListPagination()
    page = pager.paginate_queryset(queryset, request)
    return pager.get_paginated_response(serializer_class(page, many=True, context=ctx).data)
