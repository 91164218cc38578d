from wosync.models.workspace import ReadSource
from wosync.services import reconciliation, work_orders, workspaces
from wosync.services.read_router import ReadRouter

FIELDS = ["status", "signed_at", "amount", "scheduled_date"]


def _record(wo, status="OPEN", **extra):
    record = {"work_order_number": wo, "fm_key": "FM", "status": status}
    record.update(extra)
    return record


def test_set_differences_and_single_drift():
    primary = [_record("A"), _record("B"), _record("C", status="OPEN")]
    secondary = [_record("B"), _record("C", status="SIGNED"), _record("D")]

    report = reconciliation.compare_records(primary, secondary, fields=FIELDS, compare_limit=20, max_entries=50, display_limit=20)

    assert report.in_both == 2
    assert [k.work_order_number for k in report.only_in_primary] == ["A"]
    assert [k.work_order_number for k in report.only_in_secondary] == ["D"]
    assert report.compared_pairs == 2
    assert report.total_drift == 1
    assert report.drift_counts["status"] == 1
    entry = report.drift[0]
    assert entry.key.work_order_number == "C"
    assert entry.field == "status"
    assert (entry.primary_value, entry.secondary_value) == ("OPEN", "SIGNED")


def test_normalisation_ignores_format_differences():
    primary = [_record("A", status="signed", amount="250", signed_at="2024-05-01T10:00:00+00:00", scheduled_date="2024-05-01")]
    secondary = [_record("A", status=" SIGNED ", amount="250.00", signed_at="05/01/2024 10:00", scheduled_date=" 2024-05-01 ")]

    report = reconciliation.compare_records(primary, secondary, fields=FIELDS)

    assert report.total_drift == 0


def test_signed_presence_is_compared():
    report = reconciliation.compare_records(
        [_record("A", signed_at="2024-05-01T10:00:00+00:00")], [_record("A")], fields=["signed_at"]
    )

    assert report.drift_counts == {"signed_at": 1}
    assert (report.drift[0].primary_value, report.drift[0].secondary_value) == (True, False)


def test_keys_match_case_insensitively():
    report = reconciliation.compare_records(
        [{"work_order_number": "wo-1", "fm_key": "fm"}],
        [{"work_order_number": " WO-1 ", "fm_key": "FM"}],
        fields=FIELDS,
    )

    assert report.in_both == 1


def test_limits_bound_the_report():
    primary = [_record(str(i), status="OPEN") for i in range(10)]
    secondary = [_record(str(i), status="DONE") for i in range(10)] + [_record(f"x{i}") for i in range(5)]

    report = reconciliation.compare_records(
        primary, secondary, fields=["status"], compare_limit=4, max_entries=2, display_limit=3
    )

    assert report.compared_pairs == 4
    assert report.total_drift == 4
    assert len(report.drift) == 2
    assert len(report.only_in_secondary) == 3
    assert report.only_in_secondary_count == 5


def test_compare_sample_uses_workspace_primary(workspace, legacy):
    workspaces.set_read_settings(workspace.id, primary_read_source=ReadSource.DB)
    work_orders.save_work_order(workspace.id, {"work_order_number": "A", "fm_key": "FM", "status": "OPEN"})
    work_orders.save_work_order(workspace.id, {"work_order_number": "B", "fm_key": "FM", "status": "OPEN"})
    legacy.rows.extend(
        [
            {"wo_number": "B", "fmKey": "FM", "status": "SIGNED"},
            {"wo_number": "C", "fmKey": "FM", "status": "OPEN"},
        ]
    )

    report = reconciliation.compare_sample(
        workspace.id, 50, legacy_provider=lambda: legacy, router=ReadRouter(db_primary_reads=True)
    )

    assert report.primary_source == "DB"
    assert [k.work_order_number for k in report.only_in_primary] == ["A"]
    assert [k.work_order_number for k in report.only_in_secondary] == ["C"]
    assert report.drift_counts["status"] == 1


def test_compare_sample_takes_newest_rows(workspace, legacy):
    legacy.rows.extend({"wo_number": f"WO-{i}", "fmKey": "FM"} for i in range(5))

    report = reconciliation.compare_sample(workspace.id, 2, legacy_provider=lambda: legacy)

    assert report.primary_source == "LEGACY"
    assert [k.work_order_number for k in report.only_in_primary] == ["WO-4", "WO-3"]
