from remedygo.navigation.screen_tracker import ScreenTracker, screen_name_for

__all__ = ["ScreenTracker", "screen_name_for"]
