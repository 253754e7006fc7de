# State = everything an actor needs to resume serving its user after a restart.

# It is "the NOW" for the actor:

# Which user the actor is bound to

# A bounded working set of recent conversation turns

# How many connections were live at the last event

# When the last event was processed

# Live transport handles are never part of it; sessions are re-derived from
# the handles themselves on activation.
