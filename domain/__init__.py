"""Describes the dinner domain. Centres around the `DinnerDay`.

Why is this hard?

- Many members edit the same day at once. Every change is a delta on one row
  (a cook, an attendant, an ingredient) so nobody's edit eats someone else's.
- A background job writes attendance on members' behalf. It must never stomp
  on what a member set by hand, hence `is_automatically_set`.
- Money. A reported spend is split over portions into ledger entries that
  have to follow the day around: re-reporting updates, clearing deletes.
- Guests are one single-portion attendant each, which keeps the split a
  single division.

Days are never deleted. An empty day is the default state.
"""
