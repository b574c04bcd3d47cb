"""Mapping store -- persistent correspondence between platform and CRM ids.

Provides one SQLAlchemy table per entity kind (company, contact, deal,
order, request), the MappingRecord schema returned by every lookup, and
MappingStore / MappingRepository for async lookups and idempotent upserts.
"""
