"""calsync: keeps a local mirror of each owner's Google Calendar."""
