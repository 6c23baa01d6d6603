import itertools
import threading

import pytest

from app_cotizaciones.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailure,
)
from app_cotizaciones.models.entities import Actor, QuoteStatus, next_timestamp, normalize_status
from app_cotizaciones.services.quote_service import TRANSITIONS, QuoteLockRegistry
from app_cotizaciones.tests.conftest import REVISOR, VENDEDOR, sample_row


def _create(quote_service, actor, rows=None, **extra):
    data = {'clienteName': 'Acme', 'rows': [sample_row()] if rows is None else rows}
    data.update(extra)
    return quote_service.create_quote(data, actor)


def test_submission_approval_scenario(quote_service, users):
    vendedor, revisor = users['vendedor'], users['revisor']

    empty = _create(quote_service, vendedor, rows=[])
    with pytest.raises(ValidationFailure):
        quote_service.submit_for_approval(empty.id, vendedor)

    quote = _create(quote_service, vendedor)
    created_at = quote.updatedAt
    submitted = quote_service.submit_for_approval(quote.id, vendedor)
    assert submitted.status is QuoteStatus.PENDING_APPROVAL
    assert submitted.updatedAt > created_at

    sin_permiso = Actor(email=revisor.email, role=revisor.role,
                        permissions=revisor.permissions - {'approve_quotes'})
    with pytest.raises(Forbidden):
        quote_service.transition(quote.id, 'approved', sin_permiso)

    approved = quote_service.approve(quote.id, revisor)
    assert approved.status is QuoteStatus.APPROVED
    assert approved.approvedBy == revisor.email
    assert quote.id in [q.id for q in quote_service.list_by_status('approved')]
    assert quote.id not in [q.id for q in quote_service.list_by_status('pending')]


def test_created_quote_gets_identity_and_totals(quote_service, users):
    quote = _create(quote_service, users['vendedor'], rows=[sample_row(cantidad=3)])
    assert quote.id == 1
    assert quote.cotizacion_id.startswith('COT-')
    assert quote.status is QuoteStatus.DRAFT
    assert quote.createdBy == users['vendedor'].email
    assert quote.totalGeneral == 3_000_000
    assert quote.pendingSync is True


def test_create_requires_permission(quote_service, users):
    with pytest.raises(Forbidden):
        _create(quote_service, users['admin'])


def test_invalid_transitions_rejected(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    with pytest.raises(InvalidTransition):
        quote_service.approve(quote.id, users['revisor'])
    with pytest.raises(InvalidTransition):
        quote_service.transition(quote.id, 'draft', users['vendedor'])


def test_unknown_quote_is_not_found(quote_service, users):
    with pytest.raises(NotFound):
        quote_service.approve(999, users['revisor'])


def test_only_owner_submits(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    with pytest.raises(Forbidden):
        quote_service.submit_for_approval(quote.id, users['otro'])


def test_reject_requires_reason(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    quote_service.submit_for_approval(quote.id, users['vendedor'])
    with pytest.raises(ValidationFailure):
        quote_service.reject(quote.id, users['revisor'], '   ')
    rejected = quote_service.reject(quote.id, users['revisor'], 'Precio fuera de mercado')
    assert rejected.status is QuoteStatus.REJECTED
    assert rejected.rejectionReason == 'Precio fuera de mercado'
    assert rejected.statusHistory[-1]['reason'] == 'Precio fuera de mercado'


def test_revision_cycle(quote_service, users):
    vendedor, revisor = users['vendedor'], users['revisor']
    quote = _create(quote_service, vendedor)
    quote_service.submit_for_approval(quote.id, vendedor)
    revised = quote_service.request_revision(quote.id, revisor, 'Ajustar margen')
    assert revised.status is QuoteStatus.REVISION
    assert revised.revisionComments == 'Ajustar margen'

    edited = quote_service.update_quote(quote.id, {'rows': [sample_row(pvpUnitario=1_200_000)]}, vendedor)
    assert edited.totalGeneral == 1_200_000

    resubmitted = quote_service.resubmit(quote.id, vendedor)
    assert resubmitted.status is QuoteStatus.PENDING_APPROVAL
    assert [(h['from'], h['to']) for h in resubmitted.statusHistory] == [
        ('draft', 'pending_approval'),
        ('pending_approval', 'revision'),
        ('revision', 'pending_approval'),
    ]


def test_expected_status_mismatch_is_conflict(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    quote_service.submit_for_approval(quote.id, users['vendedor'])
    quote_service.approve(quote.id, users['revisor'], expected_status='pending')
    with pytest.raises(Conflict):
        quote_service.reject(quote.id, users['revisor'], 'tarde', expected_status='pending')


def test_concurrent_decisions_one_wins(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    quote_service.submit_for_approval(quote.id, users['vendedor'])
    revisor = users['revisor']

    barrier = threading.Barrier(2)
    outcomes = []

    def decide(action):
        barrier.wait()
        try:
            action()
            outcomes.append('ok')
        except Conflict:
            outcomes.append('conflict')

    threads = [
        threading.Thread(target=decide, args=(
            lambda: quote_service.approve(quote.id, revisor, expected_status='pending_approval'),)),
        threading.Thread(target=decide, args=(
            lambda: quote_service.reject(quote.id, revisor, 'no', expected_status='pending_approval'),)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ['conflict', 'ok']
    final = quote_service.get_quote(quote.id)
    assert final.status in (QuoteStatus.APPROVED, QuoteStatus.REJECTED)
    assert len(final.statusHistory) == 2


def test_update_cannot_touch_status_or_unknown_fields(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    with pytest.raises(ValidationFailure):
        quote_service.update_quote(quote.id, {'status': 'approved'}, users['vendedor'])
    with pytest.raises(ValidationFailure):
        quote_service.update_quote(quote.id, {'createdBy': 'x'}, users['vendedor'])


def test_update_locked_outside_draft_and_revision(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    quote_service.submit_for_approval(quote.id, users['vendedor'])
    with pytest.raises(ValidationFailure):
        quote_service.update_quote(quote.id, {'notes': 'cambio'}, users['vendedor'])


def test_update_by_non_owner_forbidden(quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    with pytest.raises(Forbidden):
        quote_service.update_quote(quote.id, {'notes': 'x'}, users['otro'])


def test_duplicate_starts_new_draft(quote_service, users):
    vendedor = users['vendedor']
    quote = _create(quote_service, vendedor)
    quote_service.submit_for_approval(quote.id, vendedor)
    quote_service.reject(quote.id, users['revisor'], 'caro')

    duplicate = quote_service.duplicate_quote(quote.id, vendedor)
    assert duplicate.id != quote.id
    assert duplicate.cotizacion_id != quote.cotizacion_id
    assert duplicate.status is QuoteStatus.DRAFT
    assert duplicate.clienteName == 'Acme (Copia)'
    assert duplicate.statusHistory == []
    assert duplicate.rejectionReason is None


def test_delete_only_drafts(quote_service, users):
    vendedor = users['vendedor']
    draft = _create(quote_service, vendedor)
    sent = _create(quote_service, vendedor)
    quote_service.submit_for_approval(sent.id, vendedor)

    with pytest.raises(ValidationFailure):
        quote_service.delete_quote(sent.id, vendedor)
    with pytest.raises(Forbidden):
        quote_service.delete_quote(draft.id, users['otro'])
    assert quote_service.delete_quote(draft.id, vendedor) is True
    with pytest.raises(NotFound):
        quote_service.get_quote(draft.id)


def test_visibility_by_role(quote_service, users):
    vendedor = users['vendedor']
    draft = _create(quote_service, vendedor)
    pending = _create(quote_service, vendedor)
    quote_service.submit_for_approval(pending.id, vendedor)
    approved = _create(quote_service, vendedor)
    quote_service.submit_for_approval(approved.id, vendedor)
    quote_service.approve(approved.id, users['revisor'])

    def ids(actor):
        return {q.id for q in quote_service.list_quotes(actor)}

    assert ids(vendedor) == {draft.id, pending.id, approved.id}
    assert ids(users['otro']) == set()
    assert ids(users['revisor']) == {draft.id, pending.id, approved.id}
    assert ids(users['comprador']) == {approved.id}


def test_list_by_status_reads_legacy_records(container, quote_service, users):
    container.quote_repo.add({'cotizacion_id': 'COT-LEGACY-1', 'status': 'sent_for_approval',
                              'createdBy': users['vendedor'].email})
    container.quote_repo.add({'cotizacion_id': 'COT-LEGACY-2', 'status': 'pending',
                              'createdBy': users['vendedor'].email})
    pending = quote_service.list_by_status('pending')
    assert {q.cotizacion_id for q in pending} == {'COT-LEGACY-1', 'COT-LEGACY-2'}
    assert quote_service.get_stats()['pending_approval'] == 2


def test_list_by_status_rejects_unknown_filter(quote_service):
    with pytest.raises(ValidationFailure):
        quote_service.list_by_status('archivadas')


def test_search_by_client_prefix(quote_service, users):
    _create(quote_service, users['vendedor'], clienteName='Banco Norte')
    _create(quote_service, users['vendedor'], clienteName='Acme')
    found = quote_service.search_by_client('banco', users['vendedor'])
    assert [q.clienteName for q in found] == ['Banco Norte']


def test_transitions_are_audited(container, quote_service, users):
    quote = _create(quote_service, users['vendedor'])
    quote_service.submit_for_approval(quote.id, users['vendedor'])
    history = container.audit_service.get_quote_history(quote.cotizacion_id)
    assert {log['type'] for log in history} == {'COTIZACION', 'FLUJO'}


def test_create_ignores_caller_status_and_workflow_metadata(quote_service, users):
    quote = _create(
        quote_service, users['vendedor'],
        status='approved',
        approvedBy=REVISOR,
        approvalDate='2024-01-01T00:00:00+00:00',
        statusHistory=[{'from': 'pending_approval', 'to': 'approved'}],
        selectedOptions={'item-portátil': 0},
        approvedTotal=1_000_000,
        purchaseStatus='completed',
        cotizacion_id='COT-ELEGIDO',
    )
    assert quote.status is QuoteStatus.DRAFT
    assert quote.cotizacion_id != 'COT-ELEGIDO'
    assert quote.approvedBy is None
    assert quote.approvalDate is None
    assert quote.statusHistory == []
    assert quote.selectedOptions == {}
    assert quote.approvedTotal is None
    assert quote.purchaseStatus is None

    stored = quote_service.get_quote(quote.id)
    assert stored.status is QuoteStatus.DRAFT
    assert quote.id not in [q.id for q in quote_service.list_by_status('approved')]
    assert quote.id in [q.id for q in quote_service.list_by_status('draft')]


def test_create_and_update_reject_malformed_rows(quote_service, users):
    vendedor = users['vendedor']
    with pytest.raises(ValidationFailure):
        _create(quote_service, vendedor, rows=['a'])
    with pytest.raises(ValidationFailure):
        _create(quote_service, vendedor, rows='x')

    quote = _create(quote_service, vendedor)
    with pytest.raises(ValidationFailure):
        quote_service.update_quote(quote.id, {'rows': [42]}, vendedor)
    assert quote_service.get_quote(quote.id).totalGeneral == 1_000_000


# =========================================================================
# MATRIZ COMPLETA DE TRANSICIONES
# =========================================================================

def _seed(container, status):
    """Cotización guardada directamente con un estado crudo."""
    return container.quote_repo.add({
        'cotizacion_id': f'COT-SEMILLA-{status.value}',
        'status': status.value,
        'createdBy': VENDEDOR,
        'vendorEmail': VENDEDOR,
        'clienteName': 'Acme',
        'rows': [sample_row()],
        'updatedAt': next_timestamp(),
    })


@pytest.mark.parametrize('current, target', list(itertools.product(QuoteStatus, QuoteStatus)))
def test_transition_matrix(container, quote_service, users, current, target):
    quote_id = _seed(container, current)
    edge = (normalize_status(current.value), normalize_status(target.value))
    actor = users['vendedor'] if edge[1] is QuoteStatus.PENDING_APPROVAL else users['revisor']

    if edge in TRANSITIONS:
        result = quote_service.transition(quote_id, target.value, actor, reason='motivo')
        assert result.status is edge[1]
        assert container.quote_repo.get(quote_id)['status'] == edge[1].value
        assert result.statusHistory[-1]['from'] == edge[0].value
    else:
        with pytest.raises(InvalidTransition):
            quote_service.transition(quote_id, target.value, actor, reason='motivo')
        assert container.quote_repo.get(quote_id)['status'] == current.value


@pytest.mark.parametrize('current, target', list(TRANSITIONS))
def test_transition_matrix_requires_edge_permission(container, quote_service, users, current, target):
    quote_id = _seed(container, current)
    with pytest.raises(Forbidden):
        quote_service.transition(quote_id, target.value, users['comprador'], reason='motivo')
    if TRANSITIONS[(current, target)] == 'send_for_approval':
        with pytest.raises(Forbidden):
            quote_service.transition(quote_id, target.value, users['otro'], reason='motivo')
    else:
        with pytest.raises(Forbidden):
            quote_service.transition(quote_id, target.value, users['vendedor'], reason='motivo')
    record = container.quote_repo.get(quote_id)
    assert record['status'] == current.value
    assert 'statusHistory' not in record


# =========================================================================
# DECISIONES POR ÍTEM DEL REVISOR
# =========================================================================

def _quote_with_options(quote_service, vendedor):
    quote = _create(quote_service, vendedor, rows=[
        sample_row(itemName='Portátil', pvpUnitario=1_000_000),
        sample_row(itemName='Portátil', pvpUnitario=900_000),
        sample_row(itemName='Mouse', pvpUnitario=50_000),
    ])
    quote_service.submit_for_approval(quote.id, vendedor)
    return quote


def test_approve_with_selected_options(quote_service, users):
    quote = _quote_with_options(quote_service, users['vendedor'])
    approved = quote_service.approve(
        quote.id, users['revisor'],
        selected_options={'item-portátil': 1, 'item-mouse': 2},
        item_comments={'item-mouse': 'Confirmar color'},
    )
    assert approved.status is QuoteStatus.APPROVED
    assert approved.selectedOptions == {'item-portátil': 1, 'item-mouse': 2}
    assert approved.approvedTotal == 950_000
    assert approved.totalGeneral == 1_950_000
    assert len(approved.rows) == 3
    assert approved.itemComments == {'item-mouse': 'Confirmar color'}
    assert approved.statusHistory[-1]['itemComments'] == {'item-mouse': 'Confirmar color'}

    stored = quote_service.get_quote(quote.id)
    assert stored.selectedOptions == approved.selectedOptions
    assert stored.approvedTotal == 950_000


def test_approve_without_options_keeps_full_total(quote_service, users):
    quote = _quote_with_options(quote_service, users['vendedor'])
    approved = quote_service.approve(quote.id, users['revisor'])
    assert approved.selectedOptions == {}
    assert approved.approvedTotal == 1_950_000


@pytest.mark.parametrize('options', [
    {'item-portátil': 0},
    {'item-portátil': 2, 'item-mouse': 2},
    {'item-portátil': 'primera', 'item-mouse': 2},
    {'item-portátil': 0, 'item-mouse': 2, 'item-teclado': 0},
    ['item-portátil'],
])
def test_invalid_selected_options_rejected(quote_service, users, options):
    quote = _quote_with_options(quote_service, users['vendedor'])
    with pytest.raises(ValidationFailure):
        quote_service.approve(quote.id, users['revisor'], selected_options=options)
    assert quote_service.get_quote(quote.id).status is QuoteStatus.PENDING_APPROVAL


def test_selected_options_only_when_approving(quote_service, users):
    quote = _quote_with_options(quote_service, users['vendedor'])
    with pytest.raises(ValidationFailure):
        quote_service.transition(quote.id, 'rejected', users['revisor'], reason='caro',
                                 selected_options={'item-portátil': 0, 'item-mouse': 2})


def test_revision_with_item_comments_only(quote_service, users):
    vendedor, revisor = users['vendedor'], users['revisor']
    quote = _quote_with_options(quote_service, vendedor)
    with pytest.raises(ValidationFailure):
        quote_service.request_revision(quote.id, revisor, item_comments={'item-teclado': 'x'})
    with pytest.raises(ValidationFailure):
        quote_service.request_revision(quote.id, revisor, item_comments={'item-mouse': '   '})

    revised = quote_service.request_revision(
        quote.id, revisor, item_comments={'item-portátil': 'Buscar otro mayorista'}
    )
    assert revised.status is QuoteStatus.REVISION
    assert revised.itemComments == {'item-portátil': 'Buscar otro mayorista'}

    with pytest.raises(ValidationFailure):
        quote_service.transition(quote.id, 'pending_approval', vendedor,
                                 item_comments={'item-mouse': 'listo'})
    resubmitted = quote_service.resubmit(quote.id, vendedor)
    assert resubmitted.itemComments == {'item-portátil': 'Buscar otro mayorista'}

    approved = quote_service.approve(quote.id, revisor)
    assert approved.itemComments == {}


# =========================================================================
# LOCKS POR COTIZACIÓN
# =========================================================================

def test_lock_registry_normalizes_ids_and_releases():
    registry = QuoteLockRegistry()
    with registry.hold('1'):
        with pytest.raises(Conflict):
            with registry.hold(1):
                pass
        with registry.hold(2):
            pass
    assert registry._held == set()
    with registry.hold(1):
        pass
    with pytest.raises(NotFound):
        with registry.hold('uno'):
            pass
