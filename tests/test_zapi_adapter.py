"""Tests for Z-API payload classification and identity extraction."""

import pytest

from helpers import make_inbox, zapi_text_event
from wainbound.infra.locks import CONTACT_LOCK_KEY
from wainbound.whatsapp.adapter import InvalidPayloadError
from wainbound.whatsapp.models import CONTACT_PHONE_UNAVAILABLE
from wainbound.whatsapp.zapi_adapter import ZapiAdapter, message_kind

INBOX = make_inbox("zapi")


def _without_text(**fields):
    event = zapi_text_event(**fields)
    del event["text"]
    return event


@pytest.fixture
def adapter():
    return ZapiAdapter()


class TestAccepts:
    def test_received_callback_accepted(self, adapter):
        assert adapter.accepts(zapi_text_event()) is True

    @pytest.mark.parametrize("flag", ["isGroup", "isNewsletter", "broadcast", "isStatusReply"])
    def test_flagged_events_filtered(self, adapter, flag):
        assert adapter.accepts(zapi_text_event(**{flag: True})) is False

    def test_notification_filtered(self, adapter):
        assert adapter.accepts(zapi_text_event(notification="GROUP_CREATE")) is False

    def test_other_callback_types_filtered(self, adapter):
        assert adapter.accepts(zapi_text_event(type="MessageStatusCallback")) is False

    def test_events_is_whole_payload(self, adapter):
        event = zapi_text_event()
        assert adapter.events(event) == [event]


class TestClassify:
    def test_text(self, adapter):
        d = adapter.classify(zapi_text_event(), INBOX)
        assert d.kind == "text"
        assert d.text_content == "Olá, tudo bem?"
        assert d.provider_source_id == "3EB0A1B2C3D4E5F6"
        assert d.direction == "in"
        assert d.timestamp == 1700000000
        assert d.media_ref is None

    def test_from_me_is_outgoing(self, adapter):
        assert adapter.classify(zapi_text_event(fromMe=True), INBOX).direction == "out"

    def test_text_wins_over_later_keys(self, adapter):
        event = zapi_text_event(image={"imageUrl": "https://x/y.jpg"})
        assert message_kind(event) == "text"

    def test_unknown_shape_is_unsupported(self, adapter):
        d = adapter.classify(_without_text(poll={"question": "?"}), INBOX)
        assert d.kind == "unsupported"
        assert d.should_ignore is False

    def test_image_with_caption(self, adapter):
        event = _without_text(
            image={"imageUrl": "https://cdn/img.jpg", "caption": "look", "mimeType": "image/jpeg"}
        )
        d = adapter.classify(event, INBOX)
        assert d.kind == "image"
        assert d.text_content == "look"
        assert d.media_ref.url == "https://cdn/img.jpg"
        assert d.mimetype == "image/jpeg"

    def test_document_uses_file_name(self, adapter):
        event = _without_text(
            document={
                "documentUrl": "https://cdn/doc.pdf",
                "fileName": "contrato.pdf",
                "mimeType": "application/pdf",
            }
        )
        d = adapter.classify(event, INBOX)
        assert d.kind == "file"
        assert d.text_content == "contrato.pdf"
        assert d.filename == "contrato.pdf"
        assert d.media_ref.url == "https://cdn/doc.pdf"

    def test_voice_note(self, adapter):
        event = _without_text(
            audio={"audioUrl": "https://cdn/a.ogg", "mimeType": "audio/ogg; codecs=opus", "ptt": True}
        )
        d = adapter.classify(event, INBOX)
        assert d.kind == "audio"
        assert d.is_recorded_audio is True

    def test_sticker(self, adapter):
        event = _without_text(sticker={"stickerUrl": "https://cdn/s.webp", "mimeType": "image/webp"})
        d = adapter.classify(event, INBOX)
        assert d.kind == "sticker"
        assert d.media_ref.url == "https://cdn/s.webp"

    def test_reply_target(self, adapter):
        d = adapter.classify(zapi_text_event(referenceMessageId="ORIGINAL1"), INBOX)
        assert d.reply_to_source_id == "ORIGINAL1"

    def test_reaction_target_and_value(self, adapter):
        event = _without_text(
            reaction={"value": "👍", "referencedMessage": {"messageId": "TARGET1"}}
        )
        d = adapter.classify(event, INBOX)
        assert d.kind == "reaction"
        assert d.text_content == "👍"
        assert d.reply_to_source_id == "TARGET1"
        assert d.should_ignore is False

    def test_empty_reaction_is_ignored(self, adapter):
        event = _without_text(reaction={"value": "", "referencedMessage": {"messageId": "T"}})
        assert adapter.classify(event, INBOX).should_ignore is True

    def test_edit_uses_edit_message_id(self, adapter):
        event = zapi_text_event(isEdit=True, editMessageId="EDIT1", text={"message": "fixed"})
        d = adapter.classify(event, INBOX)
        assert d.is_edit is True
        assert d.provider_source_id == "EDIT1"
        assert d.editable_target_id == "3EB0A1B2C3D4E5F6"
        assert d.text_content == "fixed"

    def test_missing_message_id_raises(self, adapter):
        event = zapi_text_event()
        del event["messageId"]
        with pytest.raises(InvalidPayloadError):
            adapter.classify(event, INBOX)


class TestContactCards:
    def test_fan_out_one_descriptor_per_phone(self, adapter):
        event = _without_text(
            contact={"displayName": "João Souza", "phones": ["5511911111111", "5511922222222"]}
        )
        descriptors = adapter.descriptors(event, INBOX)
        assert [d.contact_phones for d in descriptors] == [
            ("5511911111111",),
            ("5511922222222",),
        ]
        assert {d.provider_source_id for d in descriptors} == {"3EB0A1B2C3D4E5F6"}
        assert all(d.text_content == "João Souza" for d in descriptors)

    def test_card_without_phones(self, adapter):
        event = _without_text(contact={"displayName": "Sem Número", "phones": []})
        descriptors = adapter.descriptors(event, INBOX)
        assert len(descriptors) == 1
        assert descriptors[0].contact_phones == (CONTACT_PHONE_UNAVAILABLE,)


class TestIdentity:
    def test_phone_and_lid(self, adapter):
        identity = adapter.extract_identity(zapi_text_event(), INBOX)
        assert identity.phone == "5511987654321"
        assert identity.lid == "123456789012345@lid"
        assert identity.source_id == "123456789012345"
        assert identity.display_name == "Maria Silva"

    def test_lid_in_phone_field(self, adapter):
        event = zapi_text_event(phone="999888777@lid", chatLid=None)
        identity = adapter.extract_identity(event, INBOX)
        assert identity.phone is None
        assert identity.lid == "999888777@lid"
        assert identity.source_id == "999888777"

    def test_name_falls_back_to_chat_name_then_phone(self, adapter):
        assert adapter.extract_identity(zapi_text_event(senderName=""), INBOX).display_name == "Maria"
        identity = adapter.extract_identity(zapi_text_event(senderName=None, chatName=None), INBOX)
        assert identity.display_name == "5511987654321"

    def test_no_identifiers(self, adapter):
        identity = adapter.extract_identity(zapi_text_event(phone=None, chatLid=None), INBOX)
        assert identity.is_empty

    def test_destination_lock_per_phone(self, adapter):
        event = zapi_text_event()
        d = adapter.classify(event, INBOX)
        assert adapter.destination_lock_key(event, d, INBOX) == CONTACT_LOCK_KEY.format(
            phone="5511987654321"
        )


class TestAvatar:
    def test_sender_photo_url(self, adapter):
        event = zapi_text_event()
        identity = adapter.extract_identity(event, INBOX)
        assert adapter.avatar_url(event, identity, None) == "https://pps.whatsapp.net/photo.jpg"

    def test_non_http_photo_ignored(self, adapter):
        event = zapi_text_event(senderPhoto="data:abc", photo=None)
        identity = adapter.extract_identity(event, INBOX)
        assert adapter.avatar_url(event, identity, None) is None

    def test_from_me_photo_ignored(self, adapter):
        event = zapi_text_event(fromMe=True)
        identity = adapter.extract_identity(event, INBOX)
        assert adapter.avatar_url(event, identity, None) is None
