"""
Primary compute unit for the Request Pipeline.

- app.dispatcher: ``OutcomeDispatcher`` runs the handler behind a shielded
  timeout and routes ``SuccessOutcome`` / ``FailureOutcome`` to the success
  or failure queue in the background.
- app.handlers: the default date handler and ``load_handler`` for
  ``module:function`` handler paths.

The dispatcher is embedded in the gateway process; it is kept separate so
the routing contract can be exercised without HTTP.
"""

from .dispatcher import Handler, OutcomeDispatcher
from .handlers import handle_date_request, load_handler

__all__ = ["Handler", "OutcomeDispatcher", "handle_date_request", "load_handler"]
