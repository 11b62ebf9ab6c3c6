"""Game domain services: turn rules, scoring and timers.

The turn engine and scoring are plain Python over the models in
qwixx.models; only the scheduler knows about Flask and Socket.IO.
"""
