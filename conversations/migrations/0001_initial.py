import conversations.models
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Conversation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('conversation_id', models.CharField(default=conversations.models.generate_conversation_id, max_length=100, unique=True)),
                ('kind', models.CharField(choices=[('direct', 'Direct'), ('group', 'Group')], max_length=10)),
                ('direct_key', models.CharField(blank=True, max_length=210, null=True, unique=True)),
                ('title', models.CharField(blank=True, max_length=100)),
                ('description', models.TextField(blank=True, max_length=500)),
                ('owner_id', models.CharField(blank=True, max_length=100, null=True)),
                ('is_discoverable', models.BooleanField(default=False)),
                ('last_message_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'conversations_conversation',
                'indexes': [models.Index(fields=['last_message_at'], name='conv_last_message_at_idx')],
            },
        ),
        migrations.CreateModel(
            name='ConversationMember',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('user_id', models.CharField(max_length=100)),
                ('joined_at', models.DateTimeField(auto_now_add=True)),
                ('conversation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='conversations.conversation')),
            ],
            options={
                'db_table': 'conversations_conversationmember',
                'indexes': [models.Index(fields=['user_id'], name='conv_member_user_idx')],
                'constraints': [models.UniqueConstraint(fields=('conversation', 'user_id'), name='unique_conversation_member')],
            },
        ),
    ]
