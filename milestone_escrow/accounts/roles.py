"""
Resolve who is acting on a project: the payer, the payee, platform staff or
the scheduler acting as the system.
"""
PAYER = 'payer'
PAYEE = 'payee'
STAFF = 'staff'
SYSTEM = 'system'
OUTSIDER = 'outsider'

MODERATORS_GROUP = 'Moderators'


class SystemActor:
    pk = None
    is_staff = False

    def __str__(self):
        return 'system'

    def __repr__(self):
        return '<SystemActor>'


SYSTEM_ACTOR = SystemActor()


def is_system(actor):
    return actor is SYSTEM_ACTOR


def actor_label(actor):
    if actor is None or is_system(actor):
        return SYSTEM
    return f"user:{actor.pk}"


def is_moderator(user):
    if user is None or is_system(user):
        return False
    if user.is_staff:
        return True
    return user.groups.filter(name=MODERATORS_GROUP).exists()


def role_for(actor, project):
    if is_system(actor):
        return SYSTEM
    if actor.pk == project.payer_id:
        return PAYER
    if project.payee_id is not None and actor.pk == project.payee_id:
        return PAYEE
    if actor.is_staff:
        return STAFF
    return OUTSIDER
