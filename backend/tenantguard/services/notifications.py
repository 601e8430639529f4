"""
Owner notifications for suspensions, restorations, spikes and quota bands.

Every notification carries a dedupe key derived from the event it reports,
so rerunning a job that already notified is a no-op. Delivery failures are
recorded on the row and never propagate to the job that raised the event.
"""
import smtplib
import logging
from datetime import datetime
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantguard import db
from tenantguard.errors import StorageUnavailable, ValidationError
from tenantguard.models.notification import Notification, NotificationPreference, DEFAULT_CHANNELS
from tenantguard.utils import email_sender
from tenantguard.utils.validators import validate_notification_preference

logger = logging.getLogger(__name__)


def resolve_preference(developer_id, project_id, notification_type):
    """
    Effective (enabled, channels) for one recipient and event type.

    A project-scoped preference wins over the developer's global one; with
    neither, notifications are enabled on every channel.
    """
    candidates = NotificationPreference.query.filter(
        NotificationPreference.developer_id == developer_id,
        NotificationPreference.notification_type == notification_type,
        db.or_(NotificationPreference.project_id == project_id,
               NotificationPreference.project_id.is_(None)),
    ).all()

    scoped = [p for p in candidates if p.project_id is not None]
    chosen = scoped[0] if scoped else (candidates[0] if candidates else None)
    if chosen is None:
        return True, list(DEFAULT_CHANNELS)
    return chosen.enabled, list(chosen.channels or [])


def get_preferences(developer_id, project_id=None):
    query = NotificationPreference.query.filter_by(developer_id=developer_id)
    if project_id is not None:
        query = query.filter(db.or_(NotificationPreference.project_id == project_id,
                                    NotificationPreference.project_id.is_(None)))
    return query.order_by(NotificationPreference.notification_type,
                          NotificationPreference.project_id).all()


def set_preferences(developer_id, entries):
    """Upsert a batch of preferences for a developer.

    Raises:
        ValidationError: if any entry is malformed (nothing is written)
        StorageUnavailable: if the write fails
    """
    errors = []
    for i, entry in enumerate(entries):
        errors.extend(f'preferences[{i}]: {e}' for e in validate_notification_preference(entry))
    if errors:
        raise ValidationError(errors=errors)

    saved = []
    try:
        for entry in entries:
            pref = NotificationPreference.query.filter_by(
                developer_id=developer_id,
                project_id=entry.get('project_id'),
                notification_type=entry['notification_type'],
            ).first()
            if pref is None:
                pref = NotificationPreference(developer_id=developer_id,
                                              project_id=entry.get('project_id'),
                                              notification_type=entry['notification_type'])
                db.session.add(pref)
            pref.enabled = entry.get('enabled', True)
            pref.channels = entry.get('channels', list(DEFAULT_CHANNELS))
            saved.append(pref)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to save notification preferences for developer %s: %s',
                     developer_id, e)
        raise StorageUnavailable()
    return saved


def _dispatch(project, notification_type, dedupe_key, subject, body, data, deliver_email):
    """
    Persist and deliver one notification to the project owner.

    Returns the new ``Notification`` or None when there is no recipient,
    the owner opted out, the event was already notified, or the store
    failed. Never raises.
    """
    try:
        return _persist_and_deliver(project, notification_type, dedupe_key, subject, body,
                                    data, deliver_email)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to record %s notification for project %s: %s',
                     notification_type, project.id, e)
        return None


def _persist_and_deliver(project, notification_type, dedupe_key, subject, body, data,
                         deliver_email):
    owner = project.owner
    if owner is None:
        logger.info('Project %s has no owner; skipping %s notification', project.id, notification_type)
        return None

    enabled, channels = resolve_preference(owner.id, project.id, notification_type)
    if not enabled or not channels:
        logger.info('Developer %s opted out of %s notifications', owner.id, notification_type)
        return None

    if Notification.query.filter_by(developer_id=owner.id, dedupe_key=dedupe_key).first():
        return None

    notification = Notification(
        developer_id=owner.id,
        project_id=project.id,
        notification_type=notification_type,
        subject=subject,
        body=body,
        data=data,
        channels=channels,
        dedupe_key=dedupe_key,
        status='pending',
    )
    try:
        db.session.add(notification)
        db.session.commit()
    except IntegrityError:
        # A concurrent run recorded the same event first
        db.session.rollback()
        return None

    status = 'delivered'
    if 'email' in channels:
        try:
            deliver_email(owner.email)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.error('Email delivery of %s to developer %s failed: %s',
                         dedupe_key, owner.id, e)
            status = 'failed'
        except Exception as e:
            logger.exception('Unexpected error delivering %s to developer %s: %s',
                             dedupe_key, owner.id, e)
            status = 'failed'

    notification.status = status
    notification.delivered_at = datetime.utcnow() if status == 'delivered' else None
    db.session.commit()
    return notification


def notify_suspension(project, suspension):
    reason = suspension.reason or {}
    cap_type = reason.get('cap_type', suspension.cap_exceeded)
    current_value = reason.get('current_value')
    limit = reason.get('limit_exceeded')
    return _dispatch(
        project, 'suspension', f'suspension:{suspension.id}',
        subject=f'Project {project.name} has been suspended',
        body=f'{cap_type} reached {current_value} against a limit of {limit}.',
        data={'suspension_id': suspension.id, 'cap_type': cap_type,
              'current_value': current_value, 'limit': limit},
        deliver_email=lambda to: email_sender.send_suspension_email(
            to, project.name, cap_type, current_value, limit),
    )


def notify_unsuspension(project, event_id, reason=None):
    return _dispatch(
        project, 'unsuspension', f'unsuspension:{event_id}',
        subject=f'Project {project.name} has been restored',
        body=f'Project {project.name} is active again.',
        data={'event_id': event_id, 'reason': reason},
        deliver_email=lambda to: email_sender.send_unsuspension_email(to, project.name, reason),
    )


def notify_spike_warning(project, detection, dedupe_key):
    subject = f'Usage spike on {project.name}'
    body = (
        f'{detection["cap_type"]} usage is {detection["spike_multiplier"]}x its usual level.\n\n'
        f'Current usage: {detection["current_usage"]}. Average: {detection["average_usage"]}.'
    )
    facts = [('Cap', detection['cap_type']),
             ('Current usage', detection['current_usage']),
             ('Average usage', detection['average_usage']),
             ('Severity', detection['severity'])]
    return _dispatch(
        project, 'spike_warning', dedupe_key, subject, body, dict(detection),
        deliver_email=lambda to: email_sender.send_usage_alert_email(to, subject, body, facts),
    )


def notify_quota_warning(project, cap_type, status, used, limit, day):
    subject = f'{project.name} is at {status.percentage}% of its {cap_type} quota'
    body = f'Usage today is {used} of {limit} ({status.status}).'
    facts = [('Cap', cap_type), ('Used', used), ('Limit', limit), ('Status', status.status)]
    return _dispatch(
        project, 'quota_warning',
        f'quota:{project.id}:{cap_type}:{status.status}:{day.isoformat()}',
        subject, body,
        {'cap_type': cap_type, 'used': used, 'limit': limit,
         'status': status.status, 'percentage': status.percentage},
        deliver_email=lambda to: email_sender.send_usage_alert_email(to, subject, body, facts),
    )
