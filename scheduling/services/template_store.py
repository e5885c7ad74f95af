import logging

from sqlalchemy.orm import Session

from scheduling.database import store_errors
from scheduling.errors import NotFound, ValidationError
from scheduling.models.availability_template import AvailabilityTemplate
from scheduling.schemas.availability import TemplateCreate, TemplateUpdate, check_template_window

logger = logging.getLogger(__name__)


def create_template(db: Session, provider_id: int, data: TemplateCreate) -> AvailabilityTemplate:
    template = AvailabilityTemplate(provider_id=provider_id, **data.model_dump())

    with store_errors(db, 'create template'):
        db.add(template)
        db.commit()
        db.refresh(template)

    logger.info('Provider %s created availability template %s', provider_id, template.id)
    return template


def list_templates(db: Session, provider_id: int, include_inactive: bool = False) -> list[AvailabilityTemplate]:
    with store_errors(db, 'list templates'):
        query = db.query(AvailabilityTemplate).filter(AvailabilityTemplate.provider_id == provider_id)
        if not include_inactive:
            query = query.filter(AvailabilityTemplate.is_active.is_(True))

        return query.order_by(
            AvailabilityTemplate.day_of_week.asc(),
            AvailabilityTemplate.start_time.asc(),
        ).all()


def get_template(
    db: Session,
    template_id: int,
    provider_id: int,
    active_only: bool = False,
) -> AvailabilityTemplate:
    with store_errors(db, 'load template'):
        query = db.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.id == template_id,
            AvailabilityTemplate.provider_id == provider_id,
        )
        if active_only:
            query = query.filter(AvailabilityTemplate.is_active.is_(True))
        template = query.first()

    if template is None:
        raise NotFound('Template not found.', entity='template', entity_id=template_id)

    return template


def update_template(
    db: Session,
    template_id: int,
    provider_id: int,
    data: TemplateUpdate,
) -> AvailabilityTemplate:
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError('No fields to update.', entity='template', entity_id=template_id, transition='update')

    with store_errors(db, 'update template'):
        template = get_template(db, template_id, provider_id)

        for field_name, value in changes.items():
            setattr(template, field_name, value)

        try:
            check_template_window(template.start_time, template.end_time, template.session_duration)
        except ValueError as exc:
            raise ValidationError(str(exc), entity='template', entity_id=template_id, transition='update') from exc

        db.commit()
        db.refresh(template)

    return template


def deactivate_template(db: Session, template_id: int, provider_id: int) -> AvailabilityTemplate:
    """Soft-delete a template. Slots already generated from it stay valid."""
    with store_errors(db, 'deactivate template'):
        updated = db.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.id == template_id,
            AvailabilityTemplate.provider_id == provider_id,
        ).update({AvailabilityTemplate.is_active: False}, synchronize_session=False)

        if updated != 1:
            raise NotFound('Template not found.', entity='template', entity_id=template_id, transition='deactivate')

        db.commit()

    return get_template(db, template_id, provider_id)
