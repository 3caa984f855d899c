import asyncio
import os

import azure.cognitiveservices.speech as speechsdk
from opentelemetry import trace
from opentelemetry.trace import SpanKind

from src.enums.monitoring import PeerService, SpanAttr
from src.speech.backend import AudioFormat, SpeechServiceError, strip_wav_header
from utils.ml_logging import get_logger

logger = get_logger("speech.azure")

DEFAULT_VOICE = "en-US-AvaMultilingualNeural"


class AzureSpeechBackend:
    """
    Single-shot speech-to-text and in-memory text-to-speech on Azure Speech.

    Recognition expects 16-bit mono PCM at ``sample_rate`` (WAV input has its
    44-byte header stripped first) and uses RecognizeOnce, so one request
    carries one utterance. SDK calls block; they run on the default executor.
    """

    def __init__(
        self,
        key: str | None = None,
        region: str | None = None,
        language: str = "en-US",
        default_voice: str = DEFAULT_VOICE,
        sample_rate: int = 24000,
    ):
        self.key = key or os.getenv("AZURE_SPEECH_KEY")
        self.region = region or os.getenv("AZURE_SPEECH_REGION")
        if not self.key or not self.region:
            raise ValueError("Azure Speech key and region are required")
        self.language = language
        self.default_voice = default_voice
        self.sample_rate = sample_rate
        self.tracer = trace.get_tracer(__name__)

    def _create_speech_config(self) -> speechsdk.SpeechConfig:
        return speechsdk.SpeechConfig(subscription=self.key, region=self.region)

    def _span(self, name: str, **attributes):
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes={SpanAttr.PEER_SERVICE.value: PeerService.AZURE_SPEECH, **attributes},
        )

    # ------------------------------------------------------------------ STT

    def _recognize(self, pcm: bytes) -> str:
        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=self.sample_rate, bits_per_sample=16, channels=1
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        audio_config = speechsdk.audio.AudioConfig(stream=push_stream)

        speech_config = self._create_speech_config()
        speech_config.speech_recognition_language = self.language
        recognizer = speechsdk.SpeechRecognizer(
            speech_config=speech_config, audio_config=audio_config
        )

        push_stream.write(pcm)
        push_stream.close()

        result = recognizer.recognize_once_async().get()

        if result.reason == speechsdk.ResultReason.RecognizedSpeech:
            return result.text or ""

        if result.reason == speechsdk.ResultReason.NoMatch:
            logger.info("Speech not recognized (NoMatch)")
            return ""

        if result.reason == speechsdk.ResultReason.Canceled:
            details = result.cancellation_details
            logger.error(
                "Speech recognition canceled: %s (%s) %s",
                details.reason,
                details.error_code,
                details.error_details,
            )
            raise SpeechServiceError(
                "Speech recognition canceled",
                reason=str(details.reason),
                error_code=str(details.error_code),
            )

        raise SpeechServiceError(
            f"Unexpected recognition result: {result.reason}", reason=str(result.reason)
        )

    async def speech_to_text(self, audio: bytes, fmt: AudioFormat) -> str:
        pcm = strip_wav_header(audio) if fmt is AudioFormat.WAV else audio
        with self._span("Speech.recognize") as span:
            loop = asyncio.get_event_loop()
            text = await loop.run_in_executor(None, self._recognize, pcm)
            span.set_attribute(SpanAttr.SPEECH_STT_TEXT_LENGTH.value, len(text))
        logger.debug("Recognized %d chars from %d bytes", len(text), len(pcm))
        return text

    # ------------------------------------------------------------------ TTS

    def _synthesize(self, text: str, voice: str) -> bytes:
        speech_config = self._create_speech_config()
        speech_config.speech_synthesis_language = self.language
        speech_config.speech_synthesis_voice_name = voice
        speech_config.set_speech_synthesis_output_format(
            speechsdk.SpeechSynthesisOutputFormat.Riff24Khz16BitMonoPcm
        )

        # Synthesize to memory (audio_config=None)
        synthesizer = speechsdk.SpeechSynthesizer(speech_config=speech_config, audio_config=None)
        result = synthesizer.speak_text_async(text).get()

        if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
            return bytes(result.audio_data)

        details = result.cancellation_details
        if details is not None:
            logger.error(
                "Speech synthesis failed: %s (%s) %s",
                details.reason,
                details.error_code,
                details.error_details,
            )
            raise SpeechServiceError(
                "Speech synthesis failed",
                reason=str(details.reason),
                error_code=str(details.error_code),
            )
        raise SpeechServiceError(f"Speech synthesis failed: {result.reason}", reason=str(result.reason))

    async def text_to_speech(self, text: str, voice: str | None = None) -> bytes:
        voice = voice or self.default_voice
        with self._span(
            "Speech.synthesize",
            **{
                SpanAttr.SPEECH_TTS_VOICE.value: voice,
                SpanAttr.SPEECH_TTS_TEXT_LENGTH.value: len(text),
            },
        ):
            loop = asyncio.get_event_loop()
            audio = await loop.run_in_executor(None, self._synthesize, text, voice)
        logger.debug("Synthesized %d bytes with voice %s", len(audio), voice)
        return audio
