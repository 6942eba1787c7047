import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ReturnRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('return_number', models.CharField(db_index=True, max_length=50, unique=True)),
                ('order_number', models.CharField(db_index=True, max_length=50)),
                ('customer_id', models.IntegerField(db_index=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('under_review', 'Under Review'), ('approved_awaiting_pickup', 'Approved, Awaiting Pickup'), ('pickup_scheduled', 'Pickup Scheduled'), ('picked_up', 'Picked Up'), ('in_transit', 'In Transit'), ('out_for_delivery', 'Out for Delivery'), ('delivered_to_seller', 'Delivered to Seller'), ('received_by_seller', 'Received by Seller'), ('inspection_approved', 'Inspection Approved'), ('inspection_rejected', 'Inspection Rejected'), ('refund_queued', 'Refund Queued'), ('refunded', 'Refunded'), ('rejected', 'Rejected'), ('cancelled_by_customer', 'Cancelled by Customer'), ('pickup_failed', 'Pickup Failed'), ('pickup_cancelled', 'Pickup Cancelled'), ('disputed', 'Disputed')], default='pending', max_length=40)),
                ('status_updated_at', models.DateTimeField(blank=True, null=True)),
                ('pickup_last_event_at', models.DateTimeField(blank=True, null=True)),
                ('pickup_partner', models.CharField(blank=True, max_length=50)),
                ('pickup_partner_status', models.CharField(blank=True, max_length=100)),
                ('pickup_active_booking_id', models.BigIntegerField(blank=True, null=True)),
                ('pickup_latest_tracking_number', models.CharField(blank=True, max_length=200)),
                ('pickup_latest_external_shipment_id', models.CharField(blank=True, max_length=200)),
                ('sla_inspect_due_at', models.DateTimeField(blank=True, null=True)),
                ('sla_escalation_level', models.PositiveSmallIntegerField(default=0)),
                ('sla_last_escalated_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'return_requests',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'sla_inspect_due_at'], name='ret_req_status_sla_idx'),
                    models.Index(fields=['customer_id', 'status'], name='ret_req_cust_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReturnShipment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('partner', models.CharField(db_index=True, default='everestx', max_length=50)),
                ('tracking_number', models.CharField(blank=True, db_index=True, max_length=200)),
                ('external_shipment_id', models.CharField(blank=True, db_index=True, max_length=200)),
                ('return_flow', models.BooleanField(default=False)),
                ('payload_snapshot', models.JSONField(blank=True, default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('return_id', models.BigIntegerField(blank=True, db_index=True, null=True)),
                ('status', models.CharField(blank=True, max_length=100)),
                ('last_webhook_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'return_shipments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['partner', 'tracking_number'], name='ret_shp_partner_track_idx'),
                    models.Index(fields=['partner', 'external_shipment_id'], name='ret_shp_partner_ext_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReturnEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('at', models.DateTimeField()),
                ('actor_role', models.CharField(default='system', max_length=20)),
                ('actor_id', models.CharField(blank=True, max_length=100)),
                ('event_type', models.CharField(max_length=50)),
                ('meta', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('return_request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='returns.returnrequest')),
            ],
            options={
                'db_table': 'return_events',
                'ordering': ['at', 'id'],
                'indexes': [
                    models.Index(fields=['return_request', 'at'], name='ret_evt_req_at_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReturnShipmentEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_id', models.CharField(max_length=200)),
                ('at', models.DateTimeField()),
                ('partner_status', models.CharField(blank=True, max_length=100)),
                ('mapped_return_status', models.CharField(blank=True, max_length=40, null=True)),
                ('raw', models.JSONField(blank=True, default=dict)),
                ('received_at', models.DateTimeField(auto_now_add=True)),
                ('shipment', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='events', to='returns.returnshipment')),
            ],
            options={
                'db_table': 'return_shipment_events',
                'ordering': ['at', 'id'],
                'constraints': [
                    models.UniqueConstraint(fields=('shipment', 'event_id'), name='uniq_return_shipment_event_id'),
                ],
            },
        ),
    ]
