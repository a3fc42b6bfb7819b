from ridebot.models.ride import Ride
from ridebot.models.participant import Participant
from ridebot.models.conversation_state import ConversationState

__all__ = ["Ride", "Participant", "ConversationState"]
