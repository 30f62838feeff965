"""
Servicios de GymAccess: resolución de sedes, máquina de estados de la
suscripción, admisión por capacidad, tokens QR de check-in y difusión en
tiempo real.
"""

# Inicializador del paquete services

from gymaccess.services.access_resolver import access_grant_resolver
from gymaccess.services.subscription_state import subscription_state_machine
from gymaccess.services.capacity import capacity_admission_controller
from gymaccess.services.checkin_fanout import checkin_fanout
from gymaccess.services.checkin_tokens import checkin_token_service
from gymaccess.services.subscriptions import subscription_service
