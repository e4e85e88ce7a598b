from groupledger.handlers.ledger import ledger_router

__all__ = ["ledger_router"]
