# services/errors.py


class LeagueIntegrityError(RuntimeError):
    """
    Raised when a row the league cannot operate without (the season
    singleton, a user's team, the drafting order) disappears mid-transaction.

    Expected rule violations are returned as result dicts instead; this one
    aborts the surrounding transaction.
    """
