"""User-facing chat texts. The chat is Japanese-language."""

ANALYZING_TEXT = "請求書情報を解析中..."
ANALYZING_IMAGE = "画像から請求書情報を解析中..."
ANALYZING_AUDIO = "音声から請求書情報を解析中..."

SELECTION_PROMPT_HEADER = "請求書の発行者情報を選択してください："
SELECTION_PROMPT_FOOTER = "「1」または「2」を入力してください。\n中止する場合は「キャンセル」と入力してください。"
SELECTION_REPROMPT = "入力が正しくありません。発行者情報は「1」または「2」で選択してください。\n中止する場合は「キャンセル」と入力してください。"
SELECTION_PENDING = "発行者情報の選択待ちの請求書があります。\n「1」または「2」を入力するか、「キャンセル」と入力してから新しいメッセージを送信してください。"
SELECTION_CANCELLED = "請求書の作成をキャンセルしました。"

DRAFT_CREATED = "パターン{pattern}で請求書の下書きを作成しました！\n\n以下のURLから編集できます:\n{url}"
TIMEOUT_NOTICE = "⏱️ 一定時間操作がなかったため、処理を中断しました。\n\n新しく請求書を作成する場合は、再度メッセージを送信してください。"
PDF_SENT = "請求書PDFを送信しました！\nファイル名: {file_name}"

UNSUPPORTED_MESSAGE_TYPE = "このメッセージタイプはサポートされていません。テキスト、画像、または音声メッセージを送信してください。"
EXTRACTION_FAILED = "請求書情報の解析に失敗しました: {error}\n\n内容を確認して、もう一度送信してください。"
CORRUPT_STATE = "保存された請求書データを読み込めませんでした。お手数ですが、最初からやり直してください。"
GENERIC_ERROR = "エラーが発生しました。しばらくしてから再度お試しください。"

# Fragments of the texts above. A user message containing one of them is an
# echo of the bot's own output, not user input.
BOT_ECHO_MARKERS = (
    "一定時間操作がなかったため",
    "請求書の下書きを作成しました",
    SELECTION_PROMPT_HEADER,
    "請求書情報を解析中",
    "請求書PDFを送信しました",
)
