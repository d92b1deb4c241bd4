from sanaalink.state.app_state import AppState, Session, cart_item_count, cart_total, reduce

__all__ = ["AppState", "Session", "reduce", "cart_total", "cart_item_count"]
